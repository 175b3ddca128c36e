import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: str,
        token_max_age_hours: int,
        default_per_page: int,
        max_per_page: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.default_per_page = default_per_page
        self.max_per_page = max_per_page
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    token_secret = os.getenv(
        "FINANCE_TOKEN_SECRET",
        "5b0c0d9f6f1e4a3c8e27d4b1a9f03c6e2d7a8b5c4e1f0a9d8c7b6a5f4e3d2c1b",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "720"))
    default_per_page = int(os.getenv("FINANCE_DEFAULT_PER_PAGE", "15"))
    max_per_page = int(os.getenv("FINANCE_MAX_PER_PAGE", "100"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        default_per_page=default_per_page,
        max_per_page=max_per_page,
        log_level=log_level,
    )
