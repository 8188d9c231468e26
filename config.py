import os
from functools import lru_cache
from pathlib import Path

DEFAULT_TIMEZONE = "America/Sao_Paulo"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        session_max_age: int,
        frontend_origin: str,
        max_upload_bytes: int,
        ocr_language: str,
        max_installments: int,
        reminder_interval_minutes: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age = session_max_age
        self.frontend_origin = frontend_origin
        self.max_upload_bytes = max_upload_bytes
        self.ocr_language = ocr_language
        self.max_installments = max_installments
        self.reminder_interval_minutes = reminder_interval_minutes
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("FINANCE_TIMEZONE", DEFAULT_TIMEZONE)
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "3f9c2d71b8a04e6f95d1c0a7e2b84f16d9a35c7e08b1f42a6c5d7e9f01a2b3c4",
    )
    session_max_age = int(os.getenv("FINANCE_SESSION_MAX_AGE", str(24 * 60 * 60)))
    frontend_origin = os.getenv("FINANCE_FRONTEND_ORIGIN", "http://localhost:5173")
    max_upload_bytes = int(os.getenv("FINANCE_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    ocr_language = os.getenv("FINANCE_OCR_LANGUAGE", "por")
    max_installments = int(os.getenv("FINANCE_MAX_INSTALLMENTS", "120"))
    reminder_interval_minutes = int(
        os.getenv("FINANCE_REMINDER_INTERVAL_MINUTES", "15")
    )
    scheduler_enabled = _env_flag("FINANCE_SCHEDULER_ENABLED", True)
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age=session_max_age,
        frontend_origin=frontend_origin,
        max_upload_bytes=max_upload_bytes,
        ocr_language=ocr_language,
        max_installments=max_installments,
        reminder_interval_minutes=reminder_interval_minutes,
        scheduler_enabled=scheduler_enabled,
    )
