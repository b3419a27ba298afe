from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ------------------------------------------------------------------
    # Execution ledger (Redis protocol; Upstash exposes a rediss:// URL)
    # ------------------------------------------------------------------
    redis_url: Optional[str] = None         # redis://localhost:6379/0

    # ------------------------------------------------------------------
    # Custom tool definitions
    # ------------------------------------------------------------------
    supabase_url: Optional[str] = None      # https://<project>.supabase.co
    supabase_key: Optional[str] = None      # service role or anon key
    custom_tools_dir: Optional[str] = None  # directory of <tool>.json files

    # Which origins the catalog assembles on initialize()
    include_builtin_tools: bool = True
    include_custom_tools: bool = True
    include_integration_tools: bool = True

    # ------------------------------------------------------------------
    # Tracing sink (optional)
    # ------------------------------------------------------------------
    tracing_endpoint: Optional[str] = None  # https://tracing.internal/api/events
    tracing_api_key: Optional[str] = None

    # ------------------------------------------------------------------
    # Built-in / integration tools
    # ------------------------------------------------------------------
    http_timeout_seconds: float = 10.0
    web_max_content_chars: int = 20_000
    api_max_response_bytes: int = 5 * 1024 * 1024
    file_root: str = "data/files"
    file_max_bytes: int = 5 * 1024 * 1024
    wikipedia_base_url: str = "https://en.wikipedia.org"

    # Agent thread history
    thread_db_path: str = "data/threads.db"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "TOOLFLOW_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
