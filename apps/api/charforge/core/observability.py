"""
Structured stdout logging.

Contract locks:
- one JSON object per line
- keys: ts, level, message, request_id, event, module (+ extras)
"""
from __future__ import annotations

import datetime
import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger("charforge")


def configure_logging(level: Optional[str] = None) -> None:
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if not logger.handlers:
        logging.basicConfig(level=lvl)
    logger.setLevel(lvl)


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def emit(
    level: str,
    event: str,
    message: str,
    request_id: Optional[str] = None,
    module: str = "charforge",
    **extra: Any,
) -> None:
    lvl = level.lower()
    # non-standard levels (e.g. "audit") are always written
    levelno = logging.getLevelName(lvl.upper())
    if isinstance(levelno, int) and not logger.isEnabledFor(levelno):
        return
    payload: Dict[str, Any] = {
        "ts": now_iso(),
        "level": lvl,
        "message": message,
        "request_id": request_id,
        "event": event,
        "module": module,
    }
    payload.update(extra)
    print(json.dumps(payload, ensure_ascii=False, default=str), flush=True)
