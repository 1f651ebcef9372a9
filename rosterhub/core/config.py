from pathlib import Path
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repo root

ENV_FILE = os.getenv("ENV_FILE", str(BASE_DIR / ".env"))

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=ENV_FILE, extra="ignore")

    APP_ENV: str = "local"
    DATABASE_URL: str
    CORS_ORIGINS: str = "*"  # Comma-separated list of allowed origins, or "*" for all
    LOG_LEVEL: str = "INFO"

    # Ingest ceilings
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    MAX_USER_ROWS: int = 5000
    MAX_TEAM_ROWS: int = 1000
    LOOKUP_PAGE_SIZE: int = 500

    # Job processor
    IMPORT_STAGING_DIR: str = str(BASE_DIR / "var" / "imports")
    IMPORT_BATCH_SIZE: int = 25
    IMPORT_DEFAULT_DELAY_MS: int = 100
    IMPORT_MAX_DELAY_MS: int = 2000
    IMPORT_SLOW_ROW_MS: int = 400  # avg per-row time that triggers backpressure
    IMPORT_MAX_RETRIES: int = 3
    PROFILE_POLL_RETRIES: int = 3
    PROFILE_POLL_DELAY_MS: int = 200
    STALE_JOB_MINUTES: int = 15

    # External collaborators
    IDENTITY_PROVIDER: str = "local"  # "local" | "supabase"
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    BREVO_API_KEY: str | None = None
    BREVO_SENDER_EMAIL: str = "noreply@rosterhub.local"
    BREVO_SENDER_NAME: str = "RosterHub"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list, handling '*' for development"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

settings = Settings()
