"""
Order netting for the virtual ledger.

An incoming market order is matched against opposite-side open trades of the
same instrument, oldest first, with partial fills. There is no price book, so
price-time priority reduces to time priority. Limit, stop and stop-limit
orders are recorded as resting trades without a matching attempt.

Every function here is pure: inputs are never mutated and the caller commits
the returned diff to its own store.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from tradebook.margin import MarginDelta, release, reserve
from tradebook.models import (
    Match,
    OptionType,
    OrderRequest,
    OrderType,
    Side,
    Trade,
    TradeStatus,
    status_for,
)
from tradebook.time_machine import now as ledger_now


class ValidationError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class MatchResult:
    new_trade: Trade
    updated_trades: Tuple[Trade, ...]
    matches: Tuple[Match, ...]
    margin_delta: MarginDelta

    @property
    def matched_amount(self) -> int:
        return sum(match.amount for match in self.matches)

    @property
    def trades(self) -> Tuple[Trade, ...]:
        return (self.new_trade,) + self.updated_trades


@dataclass(frozen=True)
class CancelResult:
    trade: Trade
    margin_delta: MarginDelta

    @property
    def trades(self) -> Tuple[Trade, ...]:
        return (self.trade,)

    @property
    def matches(self) -> Tuple[Match, ...]:
        return ()


def validate_order(order: OrderRequest) -> None:
    """Reject malformed orders before any state is touched."""

    try:
        Side(order.side)
    except ValueError as exc:
        raise ValidationError("side", f"Unknown side {order.side!r}") from exc
    try:
        OrderType(order.order_type)
    except ValueError as exc:
        raise ValidationError("order_type", f"Unknown order type {order.order_type!r}") from exc
    if order.amount is None or order.amount <= 0:
        raise ValidationError("qty_positive", "Quantity must be positive")
    lot = int(order.lot_size or 1)
    if lot <= 0:
        raise ValidationError("lot_size", f"Lot size must be a positive integer, got {order.lot_size}")
    if (order.is_option or lot > 1) and order.amount % lot != 0:
        raise ValidationError("lot_multiple", f"Qty {order.amount} not aligned to lot size {lot}")
    if order.price is None or order.price <= 0:
        raise ValidationError("price_positive", "Price must be positive")
    if order.option is not None:
        try:
            OptionType(order.option.option_type)
        except ValueError as exc:
            raise ValidationError("option_type", "Option type must be CE or PE") from exc


def is_eligible(order_side: Side, symbol: str, candidate: Trade) -> bool:
    return (
        candidate.side != order_side
        and candidate.symbol == symbol
        and candidate.status not in (TradeStatus.COMPLETED, TradeStatus.CANCELLED)
        and candidate.remaining_amount > 0
    )


def eligible_trades(order: OrderRequest, open_trades: Iterable[Trade]) -> List[Trade]:
    side = Side(order.side)
    pool = [trade for trade in open_trades if is_eligible(side, order.symbol, trade)]
    pool.sort(key=lambda trade: (trade.created_at, trade.id))
    return pool


def submit_order(
    order: OrderRequest,
    open_trades: Iterable[Trade],
    *,
    trade_id: int,
    now: Optional[dt.datetime] = None,
) -> MatchResult:
    validate_order(order)
    ts = now or ledger_now()
    side = Side(order.side)
    order_type = OrderType(order.order_type)
    outstanding = order.amount
    fills: List[Tuple[Trade, int]] = []
    if order_type is OrderType.MARKET:
        for resting in eligible_trades(order, open_trades):
            if outstanding <= 0:
                break
            take = min(resting.remaining_amount, outstanding)
            fills.append((resting, take))
            outstanding -= take

    updated: List[Trade] = []
    matches: List[Match] = []
    for resting, take in fills:
        left = resting.remaining_amount - take
        if left == 0:
            updated.append(
                replace(
                    resting,
                    remaining_amount=0,
                    status=TradeStatus.COMPLETED,
                    completed_at=ts,
                    completed_with=trade_id,
                )
            )
        else:
            updated.append(replace(resting, remaining_amount=left, status=TradeStatus.PARTIALLY_COMPLETED))
        if side is Side.BUY:
            buy_price, sell_price = order.price, resting.price
        else:
            buy_price, sell_price = resting.price, order.price
        matches.append(
            Match(
                incoming_trade_id=trade_id,
                resting_trade_id=resting.id,
                symbol=order.symbol,
                amount=take,
                buy_price=buy_price,
                sell_price=sell_price,
                ts=ts,
                lot_size=order.lot_size,
            )
        )

    status = status_for(order.amount, outstanding)
    completed = status is TradeStatus.COMPLETED
    new_trade = Trade(
        id=trade_id,
        side=side,
        symbol=order.symbol,
        original_amount=order.amount,
        remaining_amount=outstanding,
        price=order.price,
        created_at=ts,
        order_type=order_type,
        status=status,
        completed_at=ts if completed else None,
        completed_with=fills[0][0].id if completed and fills else None,
        lot_size=order.lot_size,
        option=order.option,
    )
    return MatchResult(
        new_trade=new_trade,
        updated_trades=tuple(updated),
        matches=tuple(matches),
        margin_delta=reserve(side, outstanding, order.price),
    )


def exit_position(
    trade: Trade,
    price: float,
    *,
    trade_id: int,
    amount: Optional[int] = None,
    now: Optional[dt.datetime] = None,
) -> MatchResult:
    """Offset ``amount`` (default: all remaining) of ``trade`` with an opposite market order.

    Matching is restricted to ``trade`` itself so the chosen position is the
    one reduced, not the oldest opposite trade on the instrument. The exit
    notional at ``price`` is released from used margin on the trade's side.
    """

    if not trade.is_open:
        raise ValidationError("not_open", f"Trade {trade.id} has no open quantity")
    qty = trade.remaining_amount if amount is None else amount
    if qty > trade.remaining_amount:
        raise ValidationError(
            "exceeds_remaining",
            f"Qty {qty} exceeds remaining {trade.remaining_amount} on trade {trade.id}",
        )
    order = OrderRequest(
        side=trade.side.opposite(),
        symbol=trade.symbol,
        amount=qty,
        price=price,
        order_type=OrderType.MARKET,
        lot_size=trade.lot_size,
        option=trade.option,
    )
    result = submit_order(order, [trade], trade_id=trade_id, now=now)
    return replace(result, margin_delta=result.margin_delta + release(trade.side, qty, price))


def close_position(trade: Trade, price: float, *, trade_id: int, now: Optional[dt.datetime] = None) -> MatchResult:
    return exit_position(trade, price, trade_id=trade_id, now=now)


def cancel_trade(trade: Trade) -> CancelResult:
    if trade.status in (TradeStatus.COMPLETED, TradeStatus.CANCELLED):
        raise ValidationError("not_cancellable", f"Trade {trade.id} is {trade.status.value}")
    cancelled = replace(trade, status=TradeStatus.CANCELLED)
    return CancelResult(trade=cancelled, margin_delta=release(trade.side, trade.remaining_amount, trade.price))


def apply_result(trades: Mapping[int, Trade], result: MatchResult | CancelResult) -> Dict[int, Trade]:
    arena = dict(trades)
    for trade in result.trades:
        arena[trade.id] = trade
    return arena


__all__ = [
    "CancelResult",
    "MatchResult",
    "ValidationError",
    "apply_result",
    "cancel_trade",
    "close_position",
    "eligible_trades",
    "exit_position",
    "is_eligible",
    "submit_order",
    "validate_order",
]
