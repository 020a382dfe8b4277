"""
Calculator configuration

Loads settings from environment variables (and a .env file if present)
with defaults that work out of the box on the packaged reference data.
"""

import logging
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# REFERENCE DATA
# =============================================================================

BASE_DIR = Path(__file__).resolve().parent

# Directory holding components.json, interactions.json and stages.json
DATA_DIR = Path(os.getenv("DOSECALC_DATA_DIR", str(BASE_DIR / "data")))

# Optional HTTP base URL; when set the loader fetches the same three files from it
DATA_URL = os.getenv("DOSECALC_DATA_URL") or None

DATA_FILES = {
    "components": "components.json",
    "interactions": "interactions.json",
    "stages": "stages.json",
}

# Loaded data older than this is reloaded by refresh_data_if_needed()
DATA_MAX_AGE_MINUTES = int(os.getenv("DOSECALC_DATA_MAX_AGE_MINUTES", "60"))

# =============================================================================
# HTTP FETCH
# =============================================================================

FETCH_RETRIES = int(os.getenv("DOSECALC_FETCH_RETRIES", "3"))
FETCH_BACKOFF_SECONDS = float(os.getenv("DOSECALC_FETCH_BACKOFF_SECONDS", "1.0"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("DOSECALC_FETCH_TIMEOUT_SECONDS", "10"))

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("DOSECALC_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None):
    """Install a root handler for scripts and the streamlit app."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
