from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_REPORT_FOOTER = "Sistema de Gestión de Actividades - Informe generado automáticamente"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "ActivityLog"
    environment: str = os.getenv("AL_ENVIRONMENT", "development")
    host: str = os.getenv("AL_HOST", "127.0.0.1")
    port: int = int(os.getenv("AL_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip() for origin in os.getenv("AL_CORS_ORIGINS", "").split(",") if origin.strip()
        ]
    )

    sqlite_path: Path = Path(os.getenv("AL_SQLITE_PATH", "./data/activitylog.db"))
    db_timeout_seconds: float = float(os.getenv("AL_DB_TIMEOUT", "10"))

    document_dir: Path = Path(os.getenv("AL_DOCUMENT_DIR", "./data/documents"))
    max_upload_bytes: int = int(os.getenv("AL_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    max_upload_files: int = int(os.getenv("AL_MAX_UPLOAD_FILES", "5"))

    log_level: str = os.getenv("AL_LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("AL_LOG_JSON", "false").lower() == "true"

    report_footer: str = os.getenv("AL_REPORT_FOOTER", DEFAULT_REPORT_FOOTER)
    supervised_lookback_months: int = int(os.getenv("AL_SUPERVISED_LOOKBACK_MONTHS", "3"))

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("supervised_lookback_months")
    @classmethod
    def _positive_lookback(cls, value: int) -> int:
        return max(1, value)


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.document_dir.mkdir(parents=True, exist_ok=True)
