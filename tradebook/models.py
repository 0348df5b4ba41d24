"""
Domain records for the virtual trading ledger.

Instruments come in two shapes: plain instruments (equities and indices) and
option contracts, which alone carry strike and option-type fields. Trades and
matches are frozen; the matching engine returns replaced copies instead of
mutating its inputs.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Union


class Side(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        return 1 if self is Side.BUY else -1

    def opposite(self) -> "Side":
        return Side.SELL if self is Side.BUY else Side.BUY


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOPLIMIT = "stoplimit"


class TradeStatus(str, Enum):
    EXECUTED = "executed"
    PARTIALLY_COMPLETED = "partially_completed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InstrumentKind(str, Enum):
    EQUITY = "equity"
    INDEX = "index"
    OPTION = "option"


class OptionType(str, Enum):
    CALL = "CE"
    PUT = "PE"


OPEN_STATES = {TradeStatus.EXECUTED, TradeStatus.PARTIALLY_COMPLETED}


def status_for(original_amount: int, remaining_amount: int) -> TradeStatus:
    if remaining_amount <= 0:
        return TradeStatus.COMPLETED
    if remaining_amount < original_amount:
        return TradeStatus.PARTIALLY_COMPLETED
    return TradeStatus.EXECUTED


@dataclass(frozen=True)
class Listing:
    """Equity or index instrument."""

    symbol: str
    kind: InstrumentKind = InstrumentKind.EQUITY
    lot_size: int = 1
    mark_price: Optional[float] = None

    @property
    def is_option(self) -> bool:
        return False

    @property
    def lot_based(self) -> bool:
        return self.lot_size > 1

    def with_mark(self, price: float) -> "Listing":
        return replace(self, mark_price=float(price))


@dataclass(frozen=True)
class OptionTerms:
    strike_price: float
    option_type: OptionType


@dataclass(frozen=True)
class OptionContract:
    """Index option; the mark price is the option premium."""

    symbol: str
    underlying: str
    terms: OptionTerms
    lot_size: int
    mark_price: Optional[float] = None

    @property
    def kind(self) -> InstrumentKind:
        return InstrumentKind.OPTION

    @property
    def is_option(self) -> bool:
        return True

    @property
    def lot_based(self) -> bool:
        return True

    def with_mark(self, price: float) -> "OptionContract":
        return replace(self, mark_price=float(price))


Instrument = Union[Listing, OptionContract]


@dataclass(frozen=True)
class OrderRequest:
    side: Side
    symbol: str
    amount: int
    price: float
    order_type: OrderType = OrderType.MARKET
    lot_size: int = 1
    option: Optional[OptionTerms] = None

    @property
    def is_option(self) -> bool:
        return self.option is not None

    @classmethod
    def for_instrument(
        cls,
        instrument: Instrument,
        side: Side | str,
        amount: int,
        price: float,
        order_type: OrderType | str = OrderType.MARKET,
    ) -> "OrderRequest":
        return cls(
            side=Side(side),
            symbol=instrument.symbol,
            amount=amount,
            price=price,
            order_type=OrderType(order_type),
            lot_size=instrument.lot_size,
            option=instrument.terms if isinstance(instrument, OptionContract) else None,
        )


@dataclass(frozen=True)
class Trade:
    id: int
    side: Side
    symbol: str
    original_amount: int
    remaining_amount: int
    price: float
    created_at: dt.datetime
    order_type: OrderType = OrderType.MARKET
    status: TradeStatus = TradeStatus.EXECUTED
    completed_at: Optional[dt.datetime] = None
    completed_with: Optional[int] = None
    lot_size: int = 1
    option: Optional[OptionTerms] = None

    @property
    def is_option(self) -> bool:
        return self.option is not None

    @property
    def matched_amount(self) -> int:
        return self.original_amount - self.remaining_amount

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATES and self.remaining_amount > 0


@dataclass(frozen=True)
class Match:
    """One fill between an incoming order and a resting trade."""

    incoming_trade_id: int
    resting_trade_id: int
    symbol: str
    amount: int
    buy_price: float
    sell_price: float
    ts: dt.datetime
    lot_size: int = 1

    @property
    def realized(self) -> float:
        return (self.sell_price - self.buy_price) * self.amount


__all__ = [
    "Instrument",
    "InstrumentKind",
    "Listing",
    "Match",
    "OPEN_STATES",
    "OptionContract",
    "OptionTerms",
    "OptionType",
    "OrderRequest",
    "OrderType",
    "Side",
    "Trade",
    "TradeStatus",
    "status_for",
]
