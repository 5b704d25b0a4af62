"""Environment helpers for folio CLIs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_project_env(env_file: str | Path = ".env") -> bool:
    """Load .env file if present (idempotent). Returns True when a file was read."""

    env_path = Path(env_file)
    if env_path.exists():
        return load_dotenv(env_path)
    return False


def env_float(name: str) -> Optional[float]:
    """Read a float override from the environment, ignoring malformed values."""

    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value: {raw}, using config default")
        return None


def env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name} value: {raw}, using config default")
        return None


def read_secret(name: Optional[str]) -> Optional[str]:
    """Return the value of env var ``name`` (stripped), or None."""

    if not name:
        return None
    value = os.getenv(name)
    return value.strip() if value else None


def env_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw) if raw else None
