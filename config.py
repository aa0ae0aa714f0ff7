import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_secs: int,
        environment: str = "production",
        scheduler_enabled: bool = True,
        scheduler_interval_minutes: int = 60,
        create_schema: bool = True,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_secs = token_max_age_secs
        self.environment = environment
        self.scheduler_enabled = scheduler_enabled
        self.scheduler_interval_minutes = scheduler_interval_minutes
        self.create_schema = create_schema
        self.log_level = log_level

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSE_LOGGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSE_LOGGER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("EXPENSE_LOGGER_TIMEZONE", "UTC")
    token_secret = os.getenv(
        "EXPENSE_LOGGER_TOKEN_SECRET",
        "5d0c1f8e2b7a4e3d9c6b1a0f7e8d2c4b6a9f1e3d5c7b9a2e4f6d8c0b1a3e5f7d",
    )
    token_max_age_secs = int(os.getenv("EXPENSE_LOGGER_TOKEN_MAX_AGE_SECS", "3600"))
    environment = os.getenv("EXPENSE_LOGGER_ENV", "production")
    scheduler_enabled = _env_flag("EXPENSE_LOGGER_SCHEDULER_ENABLED", True)
    scheduler_interval_minutes = int(
        os.getenv("EXPENSE_LOGGER_SCHEDULER_INTERVAL_MINUTES", "60")
    )
    create_schema = _env_flag("EXPENSE_LOGGER_CREATE_SCHEMA", True)
    log_level = os.getenv("EXPENSE_LOGGER_LOG_LEVEL", "INFO")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_secs=token_max_age_secs,
        environment=environment,
        scheduler_enabled=scheduler_enabled,
        scheduler_interval_minutes=scheduler_interval_minutes,
        create_schema=create_schema,
        log_level=log_level,
    )
