from __future__ import annotations

from dataclasses import dataclass

from tradebook.models import Side

DEFAULT_AVAILABLE_MARGIN = 1_000_000.0


@dataclass(frozen=True)
class MarginDelta:
    available: float = 0.0
    used: float = 0.0

    def __add__(self, other: "MarginDelta") -> "MarginDelta":
        return MarginDelta(available=self.available + other.available, used=self.used + other.used)

    @property
    def is_zero(self) -> bool:
        return self.available == 0.0 and self.used == 0.0


ZERO_DELTA = MarginDelta()


@dataclass(frozen=True)
class MarginAccount:
    available_margin: float = DEFAULT_AVAILABLE_MARGIN
    used_margin: float = 0.0

    def apply(self, delta: MarginDelta) -> "MarginAccount":
        return MarginAccount(
            available_margin=self.available_margin + delta.available,
            used_margin=self.used_margin + delta.used,
        )


def notional(amount: int, price: float) -> float:
    # Amounts are already in contracts for options, so no lot multiplier here.
    return float(amount) * float(price)


def reserve(side: Side, amount: int, price: float) -> MarginDelta:
    """Margin movement for ``amount`` of unmatched exposure taken on ``side``.

    Buys draw down available margin into used margin; sells credit it back.
    """

    value = notional(amount, price)
    if value == 0.0:
        return ZERO_DELTA
    return MarginDelta(available=-value * side.sign, used=value * side.sign)


def release(side: Side, amount: int, price: float) -> MarginDelta:
    """Inverse of :func:`reserve`, used when resting exposure is cancelled."""

    value = notional(amount, price)
    if value == 0.0:
        return ZERO_DELTA
    return MarginDelta(available=value * side.sign, used=-value * side.sign)


__all__ = ["DEFAULT_AVAILABLE_MARGIN", "MarginAccount", "MarginDelta", "ZERO_DELTA", "notional", "release", "reserve"]
