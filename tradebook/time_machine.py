"""
Ledger clock.

Every timestamp the ledger writes (``created_at``, ``completed_at``, match
times, ledger rows) comes from :func:`now`, so tests and replays can pin the
clock with :func:`travel`. Day P&L and ledger dates use the Indian market
calendar day.
"""

from __future__ import annotations

import contextlib
import datetime as dt
from typing import Callable, Iterator, List, Optional

IST = dt.timezone(dt.timedelta(hours=5, minutes=30), name="Asia/Kolkata")

Clock = Callable[[], dt.datetime]


def _wall_clock() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# Innermost frozen clock last.
_clock_stack: List[Clock] = [_wall_clock]


def now(tz: Optional[dt.tzinfo] = None) -> dt.datetime:
    current = _clock_stack[-1]()
    if tz is None:
        return current
    return current.replace(tzinfo=tz) if current.tzinfo is None else current.astimezone(tz)


def utc_now() -> dt.datetime:
    return now(dt.timezone.utc)


def trading_day(ts: dt.datetime, tz: dt.tzinfo = IST) -> dt.date:
    """Calendar day of ``ts`` in market-local time; naive stamps are taken as UTC."""

    aware = ts if ts.tzinfo is not None else ts.replace(tzinfo=dt.timezone.utc)
    return aware.astimezone(tz).date()


def same_trading_day(left: Optional[dt.datetime], right: dt.datetime, tz: dt.tzinfo = IST) -> bool:
    return left is not None and trading_day(left, tz) == trading_day(right, tz)


@contextlib.contextmanager
def travel(frozen: dt.datetime | str) -> Iterator[dt.datetime]:
    """
    Pin the ledger clock to ``frozen`` (datetime or ISO string) inside the block.

    Naive values are read as UTC. Blocks nest; leaving one restores the
    clock that was active before it.
    """

    pinned = frozen if isinstance(frozen, dt.datetime) else dt.datetime.fromisoformat(frozen)
    if pinned.tzinfo is None:
        pinned = pinned.replace(tzinfo=dt.timezone.utc)
    _clock_stack.append(lambda: pinned)
    try:
        yield pinned
    finally:
        _clock_stack.pop()


__all__ = ["IST", "Clock", "now", "same_trading_day", "trading_day", "travel", "utc_now"]
