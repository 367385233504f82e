from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict

from replydesk.core.config import settings

BACKEND_ROOT = Path(__file__).resolve().parents[2]


def debug_log_path() -> Path:
    return BACKEND_ROOT / settings.LOG_DIR / settings.DEBUG_LOG_FILE


def debug_log(payload: Dict[str, Any]) -> None:
    """Append a single NDJSON line to the debug log. Never raises."""
    try:
        payload.setdefault("timestamp", int(time.time() * 1000))
        path = debug_log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except Exception:
        # Never let debug logging break a reply
        pass
