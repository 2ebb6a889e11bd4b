"""Runtime configuration for the Recmatcher review client."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

_BASE_DIR = Path(os.environ.get("RECMATCHER_BASE_DIR", ".")).resolve()

BACKEND_URL = os.environ.get("RECMATCHER_BACKEND_URL", "http://127.0.0.1:8787").rstrip("/")
HTTP_TIMEOUT_SECONDS = float(os.environ.get("RECMATCHER_HTTP_TIMEOUT", "15"))

CANDIDATE_PAGE_SIZE = int(os.environ.get("RECMATCHER_CANDIDATE_K", "120"))
CANDIDATE_SPAN = int(os.environ.get("RECMATCHER_CANDIDATE_SPAN", "2"))

DEFAULT_LOOP_COUNT = int(os.environ.get("RECMATCHER_LOOP_COUNT", "2"))
MIN_LOOP_COUNT = 1
MAX_LOOP_COUNT = 8
TICK_INTERVAL_MS = int(os.environ.get("RECMATCHER_TICK_MS", "20"))

CACHE_DIR = Path(os.environ.get("RECMATCHER_CACHE_DIR", _BASE_DIR / ".cache")).resolve()
SETTINGS_PATH = CACHE_DIR / "gui_settings.json"
ACTIVITY_LOG_PATH = CACHE_DIR / "review_activity.jsonl"

LOG_LEVEL = os.environ.get("RECMATCHER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

DEEP_LINK_SCHEME = "recmatcher"

DEFAULT_MOVIE_PATH: Optional[str] = os.environ.get("RECMATCHER_MOVIE_PATH") or None
DEFAULT_CLIP_PATH: Optional[str] = os.environ.get("RECMATCHER_CLIP_PATH") or None


def clamp_loop_count(value: int) -> int:
    return max(MIN_LOOP_COUNT, min(MAX_LOOP_COUNT, int(value)))


__all__ = [
    "BACKEND_URL",
    "HTTP_TIMEOUT_SECONDS",
    "CANDIDATE_PAGE_SIZE",
    "CANDIDATE_SPAN",
    "DEFAULT_LOOP_COUNT",
    "MIN_LOOP_COUNT",
    "MAX_LOOP_COUNT",
    "TICK_INTERVAL_MS",
    "CACHE_DIR",
    "SETTINGS_PATH",
    "ACTIVITY_LOG_PATH",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "DEEP_LINK_SCHEME",
    "DEFAULT_MOVIE_PATH",
    "DEFAULT_CLIP_PATH",
    "clamp_loop_count",
]
