from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_MIME = (
    "application/pdf,"
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document,"
    "text/plain"
)


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "CallSim Knowledge Pipeline"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Database
    DATABASE_URL: str = "postgresql+psycopg://postgres@localhost:5432/callsim"

    # AI Providers
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_API_VERSION: str = "2024-06-01"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.2
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_MAX_RETRIES: int = 2
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_STRICT_CARDINALITY: bool = False

    # Uploads
    UPLOAD_ALLOWED_MIME: str = DEFAULT_ALLOWED_MIME
    UPLOAD_MAX_MB: int = 10

    # Retrieval
    RAG_CHUNK_TOKENS: int = 800
    RAG_CHUNK_OVERLAP: int = 200
    RAG_TOKEN_ENCODING: str = "cl100k_base"
    RAG_TOP_K: int = 8

    # Knowledge graph
    GRAPH_LIMIT_CHUNKS: int = 200

    # Transcript lab
    LAB_MAX_SAMPLE_ATT: int = 25
    LAB_MAX_TRANSCRIPT_CHARS: int = 30000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def allowed_mime_types(self) -> frozenset[str]:
        return frozenset(m.strip().lower() for m in self.UPLOAD_ALLOWED_MIME.split(",") if m.strip())

    @property
    def use_azure(self) -> bool:
        return bool(self.AZURE_OPENAI_ENDPOINT)


@lru_cache
def get_settings() -> Settings:
    return Settings()
