"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="knowledge-pipeline", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/knowledge",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Document Storage ==========
    storage_backend: str = Field(
        default="local",
        description="Where uploaded files live: 'local' filesystem or 'http' object storage"
    )
    storage_root: Path = Field(
        default=Path("storage"),
        description="Root directory for the local storage backend"
    )
    storage_base_url: Optional[str] = Field(
        default=None,
        description="Object storage base URL for the http backend"
    )
    storage_api_key: Optional[str] = Field(
        default=None,
        description="Bearer key for the http storage backend"
    )
    storage_bucket: str = Field(default="ai-documents", description="Primary storage bucket")
    storage_legacy_buckets: List[str] = Field(
        default=["documents", "ai_documents", "chunk-tester"],
        description="Buckets used by older upload paths"
    )
    storage_legacy_prefixes: List[str] = Field(
        default=["uploads", "documents"],
        description="Path prefixes used by older upload paths"
    )
    storage_legacy_resolution: bool = Field(
        default=True,
        description="Try legacy buckets and path variants when the primary address misses"
    )
    storage_max_attempts: int = Field(
        default=3,
        description="Maximum storage locations tried per document",
        ge=1,
        le=10
    )
    storage_timeout_seconds: float = Field(default=30.0, description="HTTP storage timeout", gt=0)

    # ========== Chunking ==========
    chunk_size: int = Field(
        default=2000,
        description="Character size for document chunks",
        ge=100
    )
    chunk_overlap: int = Field(
        default=200,
        description="Overlap between document chunks",
        ge=0
    )
    min_chunk_chars: int = Field(
        default=100,
        description="Minimum viable chunk size",
        ge=1
    )
    emergency_min_chunk_chars: int = Field(
        default=30,
        description="Minimum viable chunk size in emergency mode",
        ge=1
    )
    approved_chunk_path_marker: str = Field(
        default="chunk-tester",
        description="File path segment written by the chunk review tool"
    )

    # ========== Processing ==========
    processing_timeout_seconds: float = Field(
        default=90.0,
        description="Wall-clock budget for one document processing run",
        gt=0
    )

    # ========== Content Quality Gate ==========
    quality_min_words: int = Field(default=50, ge=0)
    quality_min_words_relaxed: int = Field(default=30, ge=0)
    quality_min_unique_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    quality_min_unique_ratio_relaxed: float = Field(default=0.2, ge=0.0, le=1.0)
    quality_min_alpha_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    quality_max_markup_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    quality_max_binary_ratio: float = Field(default=0.1, ge=0.0, le=1.0)
    quality_max_placeholder_matches: int = Field(default=10, ge=0)
    quality_max_placeholder_types: int = Field(default=3, ge=0)

    # ========== Embeddings ==========
    embedding_provider: str = Field(
        default="openai",
        description="Embedding provider: openai, zai or mock"
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model"
    )
    embedding_dimension: int = Field(
        default=1536,
        description="Embedding vector dimension",
        ge=128
    )
    embedding_min_chars: int = Field(
        default=100,
        description="Chunks shorter than this are stored without an embedding",
        ge=0
    )
    embedding_concurrency: int = Field(
        default=8,
        description="Concurrent embedding requests per processing run",
        ge=1
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    zai_api_key: Optional[str] = Field(default=None, description="Z.AI API key")

    # ========== LLM Settings ==========
    llm_provider: str = Field(
        default="openai",
        description="Completion provider: openai or zai"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model for grounded answers"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=1500,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )

    # ========== Vector Store ==========
    vector_backend: str = Field(
        default="database",
        description="Similarity backend: 'milvus' or 'database' (stored embeddings)"
    )
    zilliz_uri: str = Field(default="", description="Zilliz Cloud cluster URI")
    zilliz_api_key: str = Field(default="", description="Zilliz Cloud API key")
    milvus_collection_name: str = Field(
        default="document_chunks",
        description="Milvus collection name"
    )

    # ========== Retrieval ==========
    similarity_threshold: float = Field(
        default=0.2,
        description="Minimum cosine similarity for a hit",
        ge=0.0,
        le=1.0
    )
    search_variant_limit: int = Field(
        default=8,
        description="Maximum query variants searched per request",
        ge=1,
        le=20
    )
    search_results_per_variant: int = Field(default=20, ge=1, le=100)
    general_section_limit: int = Field(
        default=5,
        description="Maximum chunks in the general context section",
        ge=1
    )
    keyword_fallback_score: float = Field(default=0.5, ge=0.0, le=1.0)
    keyword_fallback_limit: int = Field(default=5, ge=1)
    context_max_chars: int = Field(
        default=32000,
        description="Upper bound on the assembled context block",
        ge=1000
    )
    authoritative_document_types: List[str] = Field(
        default=["knowledge_pack", "standard", "regulation", "reference"],
        description="Document types treated as authoritative reference sources"
    )

    # ========== Knowledge Tiers ==========
    tier_config_path: Path = Field(
        default=Path("knowledge_tiers.yaml"),
        description="Path to knowledge-tier keyword YAML file"
    )

    # ========== Gap Tracker ==========
    followup_hours: int = Field(default=48, description="Follow-up due offset", ge=1)
    followup_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving follow-up notification requests"
    )
    followup_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for follow-up webhook calls",
        ge=0.1,
        le=30
    )
    followup_dispatch_interval: int = Field(
        default=300,
        description="Seconds between redispatch sweeps; 0 disables the scheduler",
        ge=0
    )
    gap_ticket_timeout_seconds: float = Field(
        default=5.0,
        description="Budget for creating a gap ticket before the answer is returned",
        gt=0
    )

    # ========== Conversation ==========
    conversation_window_turns: int = Field(default=3, ge=1)
    conversation_max_turns: int = Field(default=10, ge=1)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    # ========== Rate Limiting ==========
    rate_limit_per_minute: int = Field(
        default=30,
        description="Max assistant requests per minute per organization and user",
        ge=1
    )
    rate_limit_retention_minutes: int = Field(
        default=60,
        description="Usage windows older than this are pruned by the background sweep",
        ge=1
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(default=None, description="Grafana OTLP gateway URL")
    grafana_api_key: Optional[str] = Field(default=None, description="Grafana API key")
    grafana_instance_id: Optional[str] = Field(default=None, description="Grafana instance ID")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in {"local", "http"}:
            raise ValueError("storage_backend must be 'local' or 'http'")
        return v

    @field_validator("vector_backend")
    @classmethod
    def validate_vector_backend(cls, v: str) -> str:
        if v not in {"milvus", "database"}:
            raise ValueError("vector_backend must be 'milvus' or 'database'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ProcessingStatus(str):
    """Document processing lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GapTicketStatus(str):
    """Follow-up ticket lifecycle."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class ExtractionMethod(str):
    """Labels recorded for how text was pulled out of a document."""
    PLAIN_TEXT = "plain_text"
    DOCX_STRUCTURED = "docx_structured"
    DOCX_RAW_FALLBACK = "docx_raw_fallback"
    PPTX_SLIDES = "pptx_slides"
    PDF_RAW = "pdf_raw"
    BINARY_RAW = "binary_raw"
    EXTRACTION_FAILED = "extraction_failed"
    APPROVED_CACHE = "approved_cache"


class KnowledgeTier(str):
    """Knowledge source policy tiers for assistant queries."""
    INTERNAL_SECURE = "INTERNAL_SECURE"
    ORGANIZATIONAL_CONTEXT = "ORGANIZATIONAL_CONTEXT"
    EXTERNAL_AWARENESS = "EXTERNAL_AWARENESS"


# Methods whose output is best-effort and flagged as degraded
DEGRADED_METHODS = {
    ExtractionMethod.DOCX_RAW_FALLBACK,
    ExtractionMethod.PDF_RAW,
    ExtractionMethod.BINARY_RAW,
    ExtractionMethod.EXTRACTION_FAILED,
}

VALID_PROCESSING_STATUSES = [
    ProcessingStatus.PENDING, ProcessingStatus.PROCESSING,
    ProcessingStatus.COMPLETED, ProcessingStatus.FAILED
]
VALID_GAP_TICKET_STATUSES = [
    GapTicketStatus.PENDING, GapTicketStatus.SCHEDULED, GapTicketStatus.COMPLETED
]
VALID_KNOWLEDGE_TIERS = [
    KnowledgeTier.INTERNAL_SECURE, KnowledgeTier.ORGANIZATIONAL_CONTEXT, KnowledgeTier.EXTERNAL_AWARENESS
]
