from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    # SQLAlchemy URL; any sync driver works, SQLite by default
    DATABASE_URL: str = "sqlite:///./guestdesk.db"

    # Raw uploads are kept on disk only when this is set
    UPLOAD_DIR: str = ""
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    CHUNK_SIZE: int = 500
    CHUNK_OVERLAP: int = 50

    # Retrieval mode for the whole process: "keyword", "fulltext" or "hybrid"
    KNOWLEDGE_MODE: Literal["keyword", "fulltext", "hybrid"] = "hybrid"
    MAX_CONTEXT_CHUNKS: int = 5

    HISTORY_LIMIT: int = 10
    MAX_MESSAGE_CHARS: int = 1000
    # Classifications copied into the curated review queue, comma separated
    CURATED_KINDS: str = "blessing"

    # LLM provider selection: "lm-studio", "openai", "anthropic", "gemini", "perplexity" or "custom"
    LLM_PROVIDER: str = "lm-studio"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 2000
    LLM_TIMEOUT: float = 30.0

    LM_STUDIO_URL: str = "http://127.0.0.1:1234/v1"
    LLM_MODEL_NAME: str = "local-model"

    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"

    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-20241022"

    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_MODEL: str = "gemini-1.5-flash"

    PERPLEXITY_API_KEY: str = ""
    PERPLEXITY_BASE_URL: str = "https://api.perplexity.ai"
    PERPLEXITY_MODEL: str = "sonar"

    CUSTOM_BASE_URL: str = ""
    CUSTOM_API_KEY: str = ""
    CUSTOM_MODEL: str = "custom-model"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("KNOWLEDGE_MODE", mode="before")
    @classmethod
    def _legacy_mode_name(cls, value):
        # older deployments call keyword retrieval "rag"
        if isinstance(value, str) and value.strip().lower() == "rag":
            return "keyword"
        return value

    @property
    def curated_kinds(self) -> frozenset[str]:
        return frozenset(k.strip() for k in self.CURATED_KINDS.split(",") if k.strip())

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]
