import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        token_max_age_hours: int,
        max_range_days: int,
        default_currency: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.max_range_days = max_range_days
        self.default_currency = default_currency


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "3f0c2b9e51d84a7c96e1b0d7a4c5f2e8d19b6a3c7e0f4d2b8a5c1e9f6d3b0a74",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    max_range_days = int(os.getenv("FINANCE_MAX_RANGE_DAYS", "90"))
    default_currency = os.getenv("FINANCE_DEFAULT_CURRENCY", "BRL").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        max_range_days=max_range_days,
        default_currency=default_currency,
    )
