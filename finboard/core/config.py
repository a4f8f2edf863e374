from __future__ import annotations

import os
from pathlib import Path


def _project_root() -> Path:
    # core/config.py -> finboard/core -> finboard -> project root
    return Path(__file__).resolve().parents[2]


def _flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


PROJECT_ROOT: Path = _project_root()

# Data directory (SQLite DB)
DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DB_PATH: Path = Path(os.getenv("FINBOARD_DB_PATH", str(DATA_DIR / "finboard.db")))
LOG_DIR: Path = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION: bool = ENVIRONMENT == "production"

# Sessions carry the identity handed over by the sign-in provider
SESSION_SECRET_KEY: str = os.getenv("SESSION_SECRET_KEY", "finboard-dev-session-secret")
COOKIE_SAMESITE: str = os.getenv("COOKIE_SAMESITE", "lax")
if COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    COOKIE_SAMESITE = "lax"
COOKIE_SECURE: bool = _flag("COOKIE_SECURE", "1" if IS_PRODUCTION else "0")
SESSION_MAX_AGE: int = int(os.getenv("SESSION_MAX_AGE", "86400"))

AUTH_ENABLED: bool = _flag("AUTH_ENABLED", "1")

# Daily recurring-transaction run (server local time)
CRON_ENABLED: bool = _flag("CRON_ENABLED", "1")
CRON_HOUR: int = int(os.getenv("CRON_HOUR", "3"))
CRON_MINUTE: int = int(os.getenv("CRON_MINUTE", "15"))

DUE_SUMMARY_TTL_SECONDS: int = int(os.getenv("DUE_SUMMARY_TTL_SECONDS", "300"))
