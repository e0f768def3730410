# laundry_server/app/config.py
import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_DB_URL = f"sqlite:///{PROJECT_ROOT / 'laundry.db'}"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.environ.get("LAUNDRY_DATABASE_URL", DEFAULT_DB_URL)
HOST = os.environ.get("LAUNDRY_HOST", "0.0.0.0")
PORT = int(os.environ.get("LAUNDRY_PORT", "8000"))
LOG_LEVEL = os.environ.get("LAUNDRY_LOG_LEVEL", "info").lower()

# opt-in adjacency checks on status changes (default: any status -> any status)
STRICT_TRANSITIONS = _env_bool("LAUNDRY_STRICT_TRANSITIONS")

# order creation retries when a generated order number collides
ORDER_NUMBER_ATTEMPTS = 3
