from __future__ import annotations

import os
import sys

_DEBUG_LOG = os.environ.get("CARDSTACK_DEBUG", "").strip().lower() in {"1", "true", "yes", "on"}


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_logging_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[cardstack debug] {message}", file=sys.stderr)


__all__ = ["debug_log", "debug_logging_enabled", "set_debug_logging"]
