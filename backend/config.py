"""
Configuration — constants for the service layer.
User-configurable values come from profile.yaml via get_profile();
process-level settings (bind address, log level) come from the environment.
"""

import os

from settings import get_profile

_profile = get_profile()

# ── Service ──
APP_TITLE = _profile.system.name or "doloop"
APP_VERSION = "0.1.0"
API_HOST = os.environ.get("DOLOOP_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("DOLOOP_PORT", "8000"))

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]

# ── Logging ──
LOG_LEVEL = os.environ.get("DOLOOP_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# ── Streaming ──
STREAM_MEDIA_TYPE = "application/x-ndjson"

# ── Request Limits ──
MAX_MESSAGE_LENGTH = 50_000
MAX_HISTORY_MESSAGES = 50
