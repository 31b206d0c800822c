import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        auth_max_age_secs: int,
        teller_base_url: str,
        teller_cert_path: Optional[str],
        teller_key_path: Optional[str],
        teller_timeout_secs: float,
        sync_page_size: int,
        auto_sync_hours: int,
        currency_symbol: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.auth_max_age_secs = auth_max_age_secs
        self.teller_base_url = teller_base_url
        self.teller_cert_path = teller_cert_path
        self.teller_key_path = teller_key_path
        self.teller_timeout_secs = teller_timeout_secs
        self.sync_page_size = sync_page_size
        self.auto_sync_hours = auto_sync_hours
        self.currency_symbol = currency_symbol


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_TIMEZONE", "America/New_York")
    auth_secret = os.getenv(
        "BUDGET_AUTH_SECRET",
        "5d0c7f0e9b0a4c1f8a3e6b2d7c9e1f4a2b8d6c0e3f5a7b9c1d3e5f7a9b0c2d4e",
    )
    auth_max_age_secs = int(os.getenv("BUDGET_AUTH_MAX_AGE_SECS", str(7 * 24 * 3600)))
    teller_base_url = os.getenv("BUDGET_TELLER_BASE_URL", "https://api.teller.io")
    teller_cert_path = os.getenv("BUDGET_TELLER_CERT_PATH") or None
    teller_key_path = os.getenv("BUDGET_TELLER_KEY_PATH") or None
    teller_timeout_secs = float(os.getenv("BUDGET_TELLER_TIMEOUT_SECS", "10"))
    sync_page_size = int(os.getenv("BUDGET_SYNC_PAGE_SIZE", "500"))
    auto_sync_hours = int(os.getenv("BUDGET_AUTO_SYNC_HOURS", "0"))
    currency_symbol = os.getenv("BUDGET_CURRENCY_SYMBOL", "$")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        auth_max_age_secs=auth_max_age_secs,
        teller_base_url=teller_base_url,
        teller_cert_path=teller_cert_path,
        teller_key_path=teller_key_path,
        teller_timeout_secs=teller_timeout_secs,
        sync_page_size=sync_page_size,
        auto_sync_hours=auto_sync_hours,
        currency_symbol=currency_symbol,
    )
