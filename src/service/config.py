"""Runtime configuration for the Recmatcher mock backend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

HOST = os.environ.get("RECMATCHER_SERVICE_HOST", "127.0.0.1")
PORT = int(os.environ.get("RECMATCHER_SERVICE_PORT", "8787"))
LOG_LEVEL = os.environ.get("RECMATCHER_SERVICE_LOG_LEVEL", "info").lower()

_project = os.environ.get("RECMATCHER_SERVICE_PROJECT")
PROJECT_ROOT: Optional[Path] = Path(_project).expanduser().resolve() if _project else None

FIXTURE_NAME = os.environ.get("RECMATCHER_FIXTURE_NAME", "recmatch_project.json")
OVERRIDES_NAME = "recmatch_overrides.json"
REVIEW_NAME = "recmatch_review.json"

DEFAULT_PAGE_SIZE = 120
MAX_PAGE_SIZE = 1000
DEFAULT_SPAN = 2

__all__ = [
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "PROJECT_ROOT",
    "FIXTURE_NAME",
    "OVERRIDES_NAME",
    "REVIEW_NAME",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "DEFAULT_SPAN",
]
