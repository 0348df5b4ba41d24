from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Tuple

from tradebook.time_machine import utc_now

_ROOT = "tradebook"


class StructuredLogger(logging.LoggerAdapter):
    """Renders each ledger event as one compact JSON line.

    Fields bound at construction (``run_id`` for instance) are merged into
    every event; per-call fields win on conflict.
    """

    def log_event(self, level: int, event: str, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        payload: Dict[str, Any] = {"event": event, "ts": utc_now().isoformat(), **(self.extra or {}), **fields}
        self.logger.log(level, json.dumps(payload, default=str, separators=(",", ":")))

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self.logger, {**(self.extra or {}), **context})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format="%(message)s")


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Logger under the ``tradebook`` namespace, optionally with bound context."""

    qualified = name if name == _ROOT or name.startswith(f"{_ROOT}.") else f"{_ROOT}.{name}"
    return StructuredLogger(logging.getLogger(qualified), dict(context))


class RateLimitedLogger:
    """Drops repeats of the same (event, key) pair inside ``min_interval_seconds``.

    Used for warnings emitted on every price tick, such as a trade whose
    instrument has no mark yet.
    """

    def __init__(self, logger: StructuredLogger, min_interval_seconds: float = 1.0):
        self._logger = logger
        self._interval = max(min_interval_seconds, 0.0)
        self._seen: Dict[Tuple[str, str], float] = {}

    def log_event(self, level: int, event: str, key: str, **fields: Any) -> bool:
        stamp = time.monotonic()
        previous = self._seen.get((event, key))
        if previous is not None and stamp - previous < self._interval:
            return False
        self._seen[(event, key)] = stamp
        self._logger.log_event(level, event, **fields)
        return True


__all__ = ["RateLimitedLogger", "StructuredLogger", "configure_logging", "get_logger"]
