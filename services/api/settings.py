# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import List
from pathlib import Path


class Settings(BaseSettings):
    # "development" enables the no-email fallback and the wildcard embed origin
    environment: str = "development"

    # Storage settings
    db_url: str = "sqlite:///data/annota.db"

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:3001"

    # Base URL of the review web app, used to build shareable links:
    #   <web_base_url>/f/<token>        feedback link
    #   <web_base_url>/approve/<token>  approval page
    web_base_url: str = "http://localhost:3000"

    # Email settings
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = "no-reply@annota.local"
    smtp_from_name: str = "Annota Reviews"

    # Approval flow
    approval_token_ttl_hours: int = Field(
        default=24,
        description="Lifetime of an approval token/PIN pair",
    )
    # Failed PIN attempts allowed per token inside the window before 429
    pin_max_attempts: int = 5
    pin_attempt_window_seconds: int = 900

    # Embed script / review page
    # Origin the embed script posts to (data-annota-parent-origin). Empty means
    # "*" in development and web_base_url otherwise.
    embed_parent_origin: str = ""
    embed_detection_timeout_ms: int = 4000
    path_poll_interval_ms: int = 500

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.strip().lower() in ("development", "dev", "local")

    def has_email_transport(self) -> bool:
        """SMTP is usable only when both host and login are configured."""
        return bool(self.smtp_host.strip() and self.smtp_user.strip())

    def resolved_parent_origin(self) -> str:
        if self.embed_parent_origin:
            return self.embed_parent_origin
        if self.is_development:
            return "*"
        return self.web_base_url.rstrip("/")

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
