"""Configuration for the interaction engine.

Loads settings from environment variables (via a .env file or the system
environment). Every setting has a default so the package can be imported
in CI and in tests without any environment at all.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if it exists (it won't exist in CI or Docker, which is fine)
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# --- Reference database ---
# SQLAlchemy async URL. Production runs on PostgreSQL
# (postgresql+asyncpg://...), local development on a SQLite file.
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./ddi_engine.db")

# Echo every SQL statement to the log (noisy, for debugging only)
DATABASE_ECHO: bool = _as_bool(os.getenv("DATABASE_ECHO", "false"))

# --- OpenEMR connection (source of patients' active prescriptions) ---
OPENEMR_BASE_URL: str = os.getenv("OPENEMR_BASE_URL", "https://localhost:9300")
OPENEMR_SITE: str = os.getenv("OPENEMR_SITE", "default")
OPENEMR_CLIENT_ID: str = os.getenv("OPENEMR_CLIENT_ID", "")
OPENEMR_CLIENT_SECRET: str = os.getenv("OPENEMR_CLIENT_SECRET", "")
OPENEMR_USERNAME: str = os.getenv("OPENEMR_USERNAME", "")
OPENEMR_PASSWORD: str = os.getenv("OPENEMR_PASSWORD", "")

# Self-signed certificates are the norm on local OpenEMR installs
OPENEMR_SSL_VERIFY: bool = _as_bool(os.getenv("OPENEMR_SSL_VERIFY", "false"))

# --- Logging ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
