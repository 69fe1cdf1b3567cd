"""Curated example conversations and the seeding routine that loads them."""

from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from .config import config
from .errors import ConfigurationMismatchError, EmbeddingUnavailableError
from .models import ExampleRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .embeddings import EmbeddingService
    from .models import Outcome
    from .vector_store import FaissVectorStore, SQLiteVectorStore

SEED_BATCH_SIZE = 20

logger = config.get_logger(__name__)


def _example(  # noqa: PLR0913
    user_message: str,
    assistant_response: str,
    problem: str,
    solution: str,
    stage: str,
    conversion_score: float,
    outcome: Outcome = "booking_completed",
) -> ExampleRecord:
    return ExampleRecord(
        industry=config.DEFAULT_INDUSTRY,
        user_message=user_message,
        assistant_response=assistant_response,
        problem_detected=problem,
        solution_presented=solution,
        conversation_stage=stage,
        outcome=outcome,
        conversion_score=conversion_score,
        is_verified=True,
    )


# Successful exchanges for the default industry, grouped by problem type.
TRAINING_EXAMPLES: tuple[ExampleRecord, ...] = (
    _example(
        "We're losing customers every month and don't know why",
        "Customer churn can feel like watching revenue slip away. What share of "
        "customers do you lose each month, and do you know why they leave?\n\n"
        "Our Churn Prediction AI flags at-risk customers 30-60 days before they "
        "leave, which typically cuts churn by 25-35% within 90 days.",
        "churn",
        "churn_prediction",
        "qualifying",
        0.95,
    ),
    _example(
        "Customers keep switching to competitors",
        "That's tough when you can't see what's driving them away. How does the "
        "cost of winning a new customer compare to keeping an existing one?\n\n"
        "Our Customer Retention AI predicts who is at risk and why, and usually "
        "pays for itself within 4-6 months. Shall we book a call to map it to "
        "your business?",
        "churn",
        "churn_prediction",
        "solutioning",
        0.92,
    ),
    _example(
        "Our support team is drowning in tickets",
        "When ticket volume outpaces the team, response times and morale both "
        "suffer. How many tickets do you handle daily, and how many are "
        "repeat questions?\n\nOur Support Automation resolves around 60% of "
        "tickets instantly so your team can focus on complex issues.",
        "support",
        "support_automation",
        "qualifying",
        0.88,
    ),
    _example(
        "We need help with customer service scaling",
        "Hiring more people isn't always the answer when volume keeps growing. "
        "Our Intelligent Support Automation answers routine inquiries and "
        "routes complex ones to your team with full context, usually cutting "
        "costs by 50-70% while raising satisfaction.\n\nLet's book a call to "
        "walk through your setup.",
        "support",
        "support_automation",
        "solutioning",
        0.90,
    ),
    _example(
        "Too many defects are getting through our QA",
        "Quality escapes cost you in rework and in reputation. What is your "
        "defect escape rate today, and do you inspect every unit or a "
        "sample?\n\nOur Computer Vision Quality Control inspects every product "
        "at 99.7% accuracy, ten times faster than manual checks.",
        "quality",
        "quality_control",
        "qualifying",
        0.93,
    ),
    _example(
        "Manual inspection is too slow and inconsistent",
        "Human inspection has hard limits on speed and consistency. Our Vision "
        "Quality Control system runs ten times faster at 99.7% accuracy and "
        "learns your quality standards over time. Manufacturers typically see "
        "quality costs drop 40-60% in six months.\n\nLet's book a call to "
        "discuss your line.",
        "quality",
        "quality_control",
        "solutioning",
        0.91,
    ),
    _example(
        "Equipment keeps breaking down unexpectedly",
        "Unplanned downtime adds up fast. What does an hour of stopped "
        "production cost you, and do you collect sensor data from your "
        "equipment?\n\nOur Predictive Maintenance AI forecasts failures 2-4 "
        "weeks ahead and typically reduces unplanned downtime by 45%.",
        "maintenance",
        "predictive_maintenance",
        "qualifying",
        0.89,
    ),
    _example(
        "We're seeing suspicious transactions",
        "Fraud is urgent; every day of delay means more losses. What kinds of "
        "fraud are you seeing, and what is your current loss rate?\n\nOur "
        "Fraud Detection AI catches 94% of attempts in real time while cutting "
        "false positives by 70%. Given the urgency, let's get a call on the "
        "calendar this week.",
        "fraud",
        "fraud_detection",
        "solutioning",
        0.94,
    ),
    _example(
        "Our sales forecasts are always wrong",
        "Bad forecasts ripple into inventory and staffing. How accurate are "
        "your forecasts today, and how far ahead do you need them?\n\nOur "
        "Revenue Forecasting System reaches 92-95% accuracy using history, "
        "seasonality and external signals. Let's book a call to look at your "
        "numbers.",
        "revenue",
        "revenue_forecasting",
        "solutioning",
        0.87,
    ),
    _example(
        "How much does this cost?",
        "Investment depends on your volume and current costs; most clients see "
        "10-20x ROI in the first year. If churn costs you $50k a month, "
        "cutting it by 30% pays for the system within a few months.\n\nLet's "
        "hop on a quick call so I can give you accurate numbers.",
        "pricing_question",
        "roi_focused",
        "closing",
        0.75,
    ),
    _example(
        "What's the price range?",
        "Pricing follows the value delivered, from pilot projects to "
        "enterprise deployments. ROI matters more than cost: typically 10-20x "
        "within year one, with payback in 4-6 months.\n\nWant the specific "
        "numbers for your situation? Let's schedule a quick call.",
        "pricing_question",
        "roi_focused",
        "closing",
        0.72,
    ),
    _example(
        "How do you implement this?",
        "Implementation is tailored to your data infrastructure and processes; "
        "the approach depends on your tech stack, data volume and integration "
        "needs. I'd need to understand your environment first.\n\nLet's set up "
        "a meeting to walk through the roadmap for your exact situation.",
        "implementation_question",
        "consultation_required",
        "closing",
        0.80,
    ),
    _example(
        "We've tried AI before and it didn't work",
        "I hear that often. Most in-house AI projects stall without domain "
        "expertise. What specifically didn't work: accuracy, integration or "
        "something else?\n\nWe've built these systems many times in your "
        "industry and know where they usually fail. Let's talk through what "
        "went wrong and how we'd approach it differently.",
        "skepticism",
        "credibility_building",
        "qualifying",
        0.78,
    ),
    _example(
        "Just looking at AI options",
        "Smart to explore. The key is matching AI to your specific challenges. "
        "What's the biggest operational headache for your team right now, or "
        "which manual process eats the most time?",
        "discovery",
        "qualification",
        "discovery",
        0.60,
        outcome="in_progress",
    ),
)


@dataclass
class SeedSummary:
    success: int = 0
    errors: int = 0
    total: int = 0


async def seed_examples(
    embedding_service: EmbeddingService,
    vector_store: FaissVectorStore | SQLiteVectorStore,
    examples: Sequence[ExampleRecord] = TRAINING_EXAMPLES,
    industry: str | None = None,
) -> SeedSummary:
    """Embed curated examples and insert them into the ``examples`` collection.

    Examples are embedded in batches; a failed batch is counted as errors
    and seeding continues with the next one. Records are copied, so the
    module-level examples are never mutated.

    Args:
        embedding_service: Provider used to embed each example's user message.
        vector_store: Store receiving the examples.
        examples: Examples to seed. Defaults to ``TRAINING_EXAMPLES``.
        industry: Overrides the industry of every example when given.

    Returns:
        Counts of inserted and failed examples.
    """
    summary = SeedSummary(total=len(examples))

    for start in range(0, len(examples), SEED_BATCH_SIZE):
        batch = [
            replace(example, industry=industry or example.industry, id=None)
            for example in examples[start : start + SEED_BATCH_SIZE]
        ]
        try:
            embeddings = await embedding_service.embed_batch(
                [example.user_message for example in batch]
            )
        except EmbeddingUnavailableError:
            logger.exception("Could not embed seed batch starting at %d", start)
            summary.errors += len(batch)
            continue

        for example, embedding in zip(batch, embeddings, strict=True):
            example.embedding = embedding

        try:
            inserted = await asyncio.to_thread(vector_store.add_examples, batch)
        except (sqlite3.Error, OSError, RuntimeError, ConfigurationMismatchError):
            logger.exception("Could not insert seed batch starting at %d", start)
            summary.errors += len(batch)
            continue

        summary.success += inserted
        summary.errors += len(batch) - inserted
        for example in batch:
            logger.info(
                "Inserted example: %s (%s)",
                example.problem_detected,
                example.conversation_stage,
            )

    await asyncio.to_thread(vector_store.save)
    logger.info(
        "Seed summary: %d inserted, %d errors, %d total",
        summary.success,
        summary.errors,
        summary.total,
    )
    return summary
