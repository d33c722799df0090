import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_days: int,
        dedup_window_hours: int,
        notification_list_limit: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_days = token_max_age_days
        self.dedup_window_hours = dedup_window_hours
        self.notification_list_limit = notification_list_limit
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_ALERTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGET_ALERTS_DATABASE_URL")
    if not database_url:
        data_dir = _ensure_data_dir()
        database_url = f"sqlite:///{data_dir / 'budget_alerts.db'}"
    timezone = os.getenv("BUDGET_ALERTS_TIMEZONE", "UTC")
    token_secret = os.getenv(
        "BUDGET_ALERTS_TOKEN_SECRET",
        "3f9c2d1e8b7a46c0a5d4e3f2b1c0d9e8f7a6b5c4d3e2f1a0b9c8d7e6f5a4b3c2",
    )
    token_max_age_days = int(os.getenv("BUDGET_ALERTS_TOKEN_MAX_AGE_DAYS", "30"))
    dedup_window_hours = int(os.getenv("BUDGET_ALERTS_DEDUP_WINDOW_HOURS", "24"))
    notification_list_limit = int(
        os.getenv("BUDGET_ALERTS_NOTIFICATION_LIST_LIMIT", "100")
    )
    log_level = os.getenv("BUDGET_ALERTS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_days=token_max_age_days,
        dedup_window_hours=dedup_window_hours,
        notification_list_limit=notification_list_limit,
        log_level=log_level,
    )
