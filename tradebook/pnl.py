from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from tradebook.logging_utils import RateLimitedLogger, get_logger
from tradebook.metrics import LedgerMetrics
from tradebook.models import OPEN_STATES, Instrument, Match, Side, Trade, TradeStatus
from tradebook.time_machine import now as ledger_now, same_trading_day

MarkSource = Mapping[str, Union[Instrument, float, int]]


@dataclass(frozen=True)
class RealizedPair:
    symbol: str
    amount: int
    buy_price: float
    sell_price: float
    lot_size: int
    closed_at: Optional[dt.datetime]

    @property
    def pnl(self) -> float:
        return realized_pnl(self.buy_price, self.sell_price, self.amount, self.lot_size)


@dataclass
class SymbolPnL:
    symbol: str
    realized: float = 0.0
    unrealized: float = 0.0
    day: float = 0.0
    net_qty: int = 0

    @property
    def total(self) -> float:
        return self.realized + self.unrealized


@dataclass(frozen=True)
class PnLSummary:
    total_pnl: float = 0.0
    day_pnl: float = 0.0
    realized: float = 0.0
    unrealized: float = 0.0
    per_symbol: Mapping[str, SymbolPnL] = field(default_factory=dict)
    skipped: Tuple[str, ...] = ()


def unrealized_pnl(trade: Trade, mark: float) -> float:
    """Mark-to-market on the trade's still-open quantity; longs gain as the mark rises."""

    sign = Side(trade.side).sign
    if trade.is_option:
        lot = trade.lot_size or 1
        lots = trade.remaining_amount / lot
        return (mark - trade.price) * sign * lot * lots
    return (mark - trade.price) * sign * trade.remaining_amount


def realized_pnl(buy_price: float, sell_price: float, amount: int, lot_size: int = 1) -> float:
    lot = lot_size or 1
    return (sell_price - buy_price) * lot * (amount / lot)


def realized_pairs(trades: Sequence[Trade], matches: Optional[Iterable[Match]] = None) -> List[RealizedPair]:
    """Closed quantity as buy/sell pairs.

    Match records are authoritative when available. Otherwise pairs are
    rebuilt from the ``completed_with`` links of completed trades, each
    unordered pair counted once.
    """

    if matches is not None:
        return [
            RealizedPair(
                symbol=m.symbol,
                amount=m.amount,
                buy_price=m.buy_price,
                sell_price=m.sell_price,
                lot_size=m.lot_size,
                closed_at=m.ts,
            )
            for m in matches
        ]
    by_id = {trade.id: trade for trade in trades}
    seen: set[frozenset[int]] = set()
    pairs: List[RealizedPair] = []
    for trade in trades:
        if trade.status is not TradeStatus.COMPLETED or trade.completed_with is None:
            continue
        partner = by_id.get(trade.completed_with)
        if partner is None or partner.symbol != trade.symbol or partner.side == trade.side:
            continue
        key = frozenset((trade.id, partner.id))
        if key in seen:
            continue
        seen.add(key)
        buy, sell = (trade, partner) if trade.side is Side.BUY else (partner, trade)
        stamps = [ts for ts in (trade.completed_at, partner.completed_at) if ts is not None]
        pairs.append(
            RealizedPair(
                symbol=trade.symbol,
                amount=min(trade.original_amount, partner.original_amount),
                buy_price=buy.price,
                sell_price=sell.price,
                lot_size=trade.lot_size or 1,
                closed_at=max(stamps) if stamps else None,
            )
        )
    return pairs


def _mark_for(instruments: MarkSource, symbol: str) -> Optional[float]:
    entry = instruments.get(symbol)
    if entry is None:
        return None
    if isinstance(entry, (int, float)):
        return float(entry)
    return entry.mark_price


def compute_pnl(
    trades: Iterable[Trade],
    instruments: MarkSource,
    now: Optional[dt.datetime] = None,
    matches: Optional[Iterable[Match]] = None,
) -> PnLSummary:
    ts = now or ledger_now()
    trade_list = list(trades)
    grouped: Dict[str, List[Trade]] = defaultdict(list)
    for trade in trade_list:
        grouped[trade.symbol].append(trade)
    pairs_by_symbol: Dict[str, List[RealizedPair]] = defaultdict(list)
    for pair in realized_pairs(trade_list, matches):
        pairs_by_symbol[pair.symbol].append(pair)

    per_symbol: Dict[str, SymbolPnL] = {}
    skipped: List[str] = []
    for symbol in sorted(set(grouped) | set(pairs_by_symbol)):
        active = [t for t in grouped.get(symbol, ()) if t.status in OPEN_STATES and t.remaining_amount > 0]
        pairs = pairs_by_symbol.get(symbol, [])
        if not active and not pairs:
            continue
        mark = _mark_for(instruments, symbol)
        if mark is None:
            skipped.append(symbol)
            continue
        row = SymbolPnL(symbol=symbol)
        for trade in active:
            pnl = unrealized_pnl(trade, mark)
            row.unrealized += pnl
            row.net_qty += trade.remaining_amount * Side(trade.side).sign
            if same_trading_day(trade.created_at, ts):
                row.day += pnl
        for pair in pairs:
            pnl = pair.pnl
            row.realized += pnl
            if same_trading_day(pair.closed_at, ts):
                row.day += pnl
        per_symbol[symbol] = row

    realized = sum(row.realized for row in per_symbol.values())
    unrealized = sum(row.unrealized for row in per_symbol.values())
    return PnLSummary(
        total_pnl=realized + unrealized,
        day_pnl=sum(row.day for row in per_symbol.values()),
        realized=realized,
        unrealized=unrealized,
        per_symbol=per_symbol,
        skipped=tuple(skipped),
    )


class PnLCalculator:
    """Runs :func:`compute_pnl` on each tick, warning about symbols without marks."""

    def __init__(self, metrics: Optional[LedgerMetrics] = None, warn_interval_seconds: float = 60.0):
        self._metrics = metrics
        self._logger = get_logger("pnl")
        self._skip_logger = RateLimitedLogger(self._logger, min_interval_seconds=warn_interval_seconds)
        self.last: Optional[PnLSummary] = None

    def compute(
        self,
        trades: Iterable[Trade],
        instruments: MarkSource,
        now: Optional[dt.datetime] = None,
        matches: Optional[Iterable[Match]] = None,
    ) -> PnLSummary:
        summary = compute_pnl(trades, instruments, now=now, matches=matches)
        for symbol in summary.skipped:
            self._skip_logger.log_event(logging.WARNING, "pnl_unknown_instrument", key=symbol, symbol=symbol)
            if self._metrics:
                self._metrics.pnl_skipped_total.labels(symbol=symbol).inc()
        if self._metrics:
            self._metrics.publish_pnl(summary)
        self.last = summary
        return summary


__all__ = [
    "PnLCalculator",
    "PnLSummary",
    "RealizedPair",
    "SymbolPnL",
    "compute_pnl",
    "realized_pairs",
    "realized_pnl",
    "unrealized_pnl",
]
