"""Configuration for the AI review analytics pipeline."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def get_cache_dir() -> Path:
    """Get the global cache directory for aireview data."""
    # Use XDG_CACHE_HOME if set, otherwise ~/.cache
    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return Path(xdg_cache) / "aireview"
    return Path.home() / ".cache" / "aireview"


DATA_DIR = get_cache_dir()

# Storage
DB_PATH = Path(os.environ.get("AIREVIEW_DB_PATH", DATA_DIR / "aireview.duckdb"))
LOG_FILE = Path(os.environ.get("AIREVIEW_LOG_FILE", DATA_DIR / "aireview.log"))

# Pipeline settings
BATCH_SIZE = int(os.environ.get("AIREVIEW_BATCH_SIZE", "100"))  # Records per write transaction
DEFAULT_OBSERVATION_WINDOW_DAYS = 14
