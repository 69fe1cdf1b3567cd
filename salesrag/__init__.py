"""SalesRAG - retrieval-augmented context for conversational sales assistants."""

from .aggregation import aggregate
from .cache import TTLCache
from .context_builder import ContextBuilder
from .conversation import (
    SalesConversation,
    build_enhanced_system_prompt,
    determine_conversation_stage,
    extract_problems_discussed,
)
from .embeddings import EmbeddingService
from .errors import (
    ConfigurationMismatchError,
    EmbeddingUnavailableError,
    RecordValidationError,
    SalesRAGError,
    SearchUnavailableError,
    WriteFailedError,
)
from .guidance import synthesize_guidance
from .models import (
    ChatMessage,
    ConversationHistory,
    ConversationRecord,
    ExampleRecord,
    RAGContext,
    SemanticSearchResult,
    SimilarConversation,
)
from .seeding import TRAINING_EXAMPLES, SeedSummary, seed_examples
from .vector_store import FaissVectorStore, SQLiteVectorStore, get_vector_store

__all__ = [
    "TRAINING_EXAMPLES",
    "ChatMessage",
    "ConfigurationMismatchError",
    "ContextBuilder",
    "ConversationHistory",
    "ConversationRecord",
    "EmbeddingService",
    "EmbeddingUnavailableError",
    "ExampleRecord",
    "FaissVectorStore",
    "RAGContext",
    "RecordValidationError",
    "SQLiteVectorStore",
    "SalesConversation",
    "SalesRAGError",
    "SearchUnavailableError",
    "SeedSummary",
    "SemanticSearchResult",
    "SimilarConversation",
    "TTLCache",
    "WriteFailedError",
    "aggregate",
    "build_enhanced_system_prompt",
    "determine_conversation_stage",
    "extract_problems_discussed",
    "get_vector_store",
    "seed_examples",
    "synthesize_guidance",
]
