"""Application settings loaded from environment variables via pydantic-settings.

Settings are read from two sources (in priority order):

  1. **Environment variables** -- e.g. ``OPENAI_API_KEY=sk-abc123``
  2. **.env file** -- key=value lines in the project root ``.env`` file

Field ``crawl_concurrency`` maps to env var ``CRAWL_CONCURRENCY``.  List
fields (``CUSTOM_FILTER_PATTERNS``) are given as JSON arrays.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """sitekb application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Embedding ===
    # "openai" (any OpenAI-compatible API) or "fastembed" (local ONNX).
    embedding_provider: str = "openai"
    openai_api_key: str = ""
    openai_base_url: str = ""  # Custom base URL for OpenAI-compatible APIs
    openai_embedding_model: str = "text-embedding-3-small"
    fastembed_model: str = "BAAI/bge-small-en-v1.5"
    embedding_batch_size: int = 10
    embedding_batch_delay: float = 0.5
    embedding_max_retries: int = 3
    embedding_retry_delay: float = 1.0
    embedding_timeout: float = 30.0

    # === Storage ===
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "sitekb_chunks"
    state_db_path: str = "data/ingestion_state.db"

    # === Crawler ===
    crawl_concurrency: int = 3
    crawl_batch_delay: float = 1.0
    crawl_timeout: float = 30.0
    crawl_max_redirects: int = 5
    crawl_user_agent: str = "SiteKBCrawler/1.0 (+https://example.com/bot)"
    crawl_respect_robots: bool = True
    crawl_use_sitemaps: bool = True
    filter_login_pages: bool = True
    filter_error_pages: bool = True
    custom_filter_patterns: list[str] = []
    render_javascript: bool = False

    # === Chunking ===
    chunk_size: int = 1000
    chunk_overlap: int = 200
    chunk_min_chars: int = 50
    chunk_max_chars: int = 1200

    # === Retrieval ===
    retrieval_top_k: int = 5
    retrieval_min_similarity: float = 0.7
    retrieval_cache_ttl: int = 300
    retrieval_cache_max_size: int = 1000

    # === Ingestion limits (per-tenant entitlement defaults) ===
    ingestion_max_pages: int = 50
    ingestion_max_bytes: int = 20 * 1024 * 1024

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"
