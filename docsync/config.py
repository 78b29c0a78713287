"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PLACEHOLDER_SECRET = "change-me-in-production"


class Settings(BaseSettings):
    """DocSync settings; every field can be overridden by an upper-case env var."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Signs access tokens and derives the credential encryption key.
    secret_key: str = _PLACEHOLDER_SECRET
    debug: bool = False
    expose_docs: bool = False
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    database_url: str = "sqlite+aiosqlite:///data/db/docsync.db"
    object_store_dir: Path = Path("./data/objects")

    remote_api_url: str = "https://api.github.com"
    remote_user_agent: str = "DocSync"
    remote_timeout_seconds: float = Field(default=15.0, gt=0)

    tracked_extensions: list[str] = Field(default_factory=lambda: [".md"])
    sync_max_workers: int = Field(default=4, ge=1, le=32)

    def validate_runtime_security(self) -> None:
        """Refuse to serve with placeholder secrets or a plain-HTTP remote outside debug."""
        if self.debug:
            return
        problems = []
        if self.secret_key == _PLACEHOLDER_SECRET or len(self.secret_key) < 32:
            problems.append("SECRET_KEY must be a high-entropy value of at least 32 characters")
        if not self.remote_api_url.startswith("https://"):
            problems.append("REMOTE_API_URL must use https outside debug mode")
        if problems:
            raise ValueError("Insecure production configuration: " + "; ".join(problems))
