"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from .env or environment variables."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Storage
    database_path: str = "./data/contracts.db"

    # Signing links
    public_base_url: str = "http://localhost:5001"
    signing_window_days: int = 90
    token_bytes: int = 32

    # Templates shipped outside the package (optional)
    templates_dir: str = ""

    # Reverse proxies in front of the web app whose X-Forwarded-For is trusted
    trusted_proxies: int = 0

    # Agency
    agency_name: str = "Speak About AI"
    admin_email: str = ""

    # Push Notifications
    pushover_user_key: str = ""
    pushover_api_token: str = ""
    ntfy_topic: str = ""
    ntfy_server: str = "https://ntfy.sh"

    # SMTP
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    # Application
    log_level: str = "INFO"

    @field_validator("token_bytes")
    @classmethod
    def _min_entropy(cls, v: int) -> int:
        # 16 bytes = 128 bits, the floor for an unguessable capability URL
        if v < 16:
            raise ValueError("token_bytes must be at least 16")
        return v

    @property
    def database_file(self) -> Path:
        p = Path(self.database_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def templates_path(self) -> Path | None:
        return Path(self.templates_dir) if self.templates_dir else None

    def signing_url(self, token: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/contracts/sign/{token}"

    def has_pushover(self) -> bool:
        return bool(self.pushover_user_key and self.pushover_api_token)

    def has_ntfy(self) -> bool:
        return bool(self.ntfy_topic)

    def has_smtp(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


def get_settings() -> Settings:
    return Settings()
