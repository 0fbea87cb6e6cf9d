# farmland/config.py
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from farmland.retry import RetryConfig

# Load .env from current working directory (safe to call multiple times)
load_dotenv()

# Resolve to the project root (one level up from farmland/)
BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATABASE_URL = f"sqlite:///{(BASE_DIR / 'farms.db').as_posix()}"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _bound(name: str, default: str) -> Optional[float]:
    # empty value disables the bound
    raw = os.environ.get(name, default).strip()
    return float(raw) if raw else None


def _clean_url(raw: str) -> str:
    # strip surrounding whitespace & quotes copied from .env files
    s = raw.strip()
    if (s.startswith('"') and s.endswith('"')) or (s.startswith("'") and s.endswith("'")):
        s = s[1:-1].strip()
    return s


@dataclass
class Settings:
    database_url: str
    reject_overlaps: bool
    verify_rollups: bool
    retry_max_attempts: int
    retry_initial_delay: float
    retry_max_delay: float
    min_farm_ha: Optional[float]
    max_farm_ha: Optional[float]
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_clean_url(os.environ.get("FARMLAND_DATABASE_URL", "")) or DEFAULT_DATABASE_URL,
            reject_overlaps=_flag("FARMLAND_REJECT_OVERLAPS"),
            verify_rollups=_flag("FARMLAND_VERIFY_ROLLUPS"),
            retry_max_attempts=int(os.environ.get("FARMLAND_RETRY_MAX_ATTEMPTS", 5)),
            retry_initial_delay=float(os.environ.get("FARMLAND_RETRY_INITIAL_DELAY", 0.05)),
            retry_max_delay=float(os.environ.get("FARMLAND_RETRY_MAX_DELAY", 2.0)),
            min_farm_ha=_bound("FARMLAND_MIN_FARM_HA", "0.01"),
            max_farm_ha=_bound("FARMLAND_MAX_FARM_HA", "100"),
            log_level=os.environ.get("FARMLAND_LOG_LEVEL", "INFO").upper(),
        )

    @property
    def retry(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("farmland").setLevel(level)


settings = Settings.from_env()
