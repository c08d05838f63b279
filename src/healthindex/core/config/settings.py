"""Application settings loaded from environment variables (and ``.env``)."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Health index server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    hix_transport: Literal["streamable-http", "stdio"] = "streamable-http"
    # Loopback only by default; the tools have no auth layer in front of them.
    hix_host: str = "127.0.0.1"
    hix_port: int = 8010
    hix_log_level: Literal["debug", "info", "warning", "error"] = "info"
    hix_allow_insecure_bind: bool = False

    # Clinical record store
    db_path: str = "~/.healthindex/records.db"

    # Fernet key for PHI columns; the record store is disabled when empty.
    encryption_key: str = ""
    # Comma-separated retired keys that may still decrypt older rows
    encryption_previous_keys: str = ""

    audit_enabled: bool = True

    @property
    def previous_encryption_keys(self) -> list[str]:
        return [k.strip() for k in self.encryption_previous_keys.split(",") if k.strip()]


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
