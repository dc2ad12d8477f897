import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        preferences_dir: Path,
        preferences_max_age_days: int,
        api_url: str,
        api_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.preferences_dir = preferences_dir
        self.preferences_max_age_days = preferences_max_age_days
        self.api_url = api_url
        self.api_timeout_secs = api_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_SIM_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget_sim.db"
    database_url = os.getenv("BUDGET_SIM_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BUDGET_SIM_TIMEZONE", "America/Bogota")
    csrf_secret = os.getenv(
        "BUDGET_SIM_CSRF_SECRET",
        "4c1f0e8b2d7a45f3a9e6b18d0c5e7f2a9b3d6e1f4a7c0b2d5e8f1a4c7b0d3e6f",
    )
    preferences_dir = Path(
        os.getenv("BUDGET_SIM_PREFERENCES_DIR", str(data_dir / "preferences"))
    ).resolve()
    max_age_days = int(os.getenv("BUDGET_SIM_PREFERENCES_MAX_AGE_DAYS", "30"))
    api_url = os.getenv("BUDGET_SIM_API_URL", "http://127.0.0.1:8000").rstrip("/")
    api_timeout_secs = float(os.getenv("BUDGET_SIM_API_TIMEOUT_SECS", "10"))
    log_level = os.getenv("BUDGET_SIM_LOG_LEVEL", "INFO").upper()
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        preferences_dir=preferences_dir,
        preferences_max_age_days=max_age_days,
        api_url=api_url,
        api_timeout_secs=api_timeout_secs,
        log_level=log_level,
    )
