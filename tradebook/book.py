from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

from tradebook.config import AppConfig
from tradebook.instruments import InstrumentRegistry, build_instrument
from tradebook.logging_utils import get_logger
from tradebook.margin import MarginAccount
from tradebook.matching import (
    CancelResult,
    MatchResult,
    ValidationError,
    apply_result,
    cancel_trade,
    exit_position,
    submit_order,
)
from tradebook.metrics import LedgerMetrics
from tradebook.models import Instrument, Match, OrderRequest, OrderType, Side, Trade, TradeStatus
from tradebook.pnl import PnLCalculator, PnLSummary
from tradebook.time_machine import now as ledger_now

if TYPE_CHECKING:
    from persistence import TradeStore


class UnknownTradeError(KeyError):
    pass


class TradeBook:
    """Single-account virtual ledger built on the pure matching and P&L functions.

    Holds the trade arena keyed by id, the match records and the margin
    account. Each mutation runs under one lock and is written to the store
    before the in-memory state changes.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        store: Optional[TradeStore] = None,
        metrics: Optional[LedgerMetrics] = None,
    ):
        self._cfg = config or AppConfig.from_dict({})
        self._store = store
        self._metrics = metrics
        self._logger = get_logger("book", run_id=self._cfg.run_id)
        self._lock = threading.RLock()
        self.instruments = InstrumentRegistry(self._cfg.ledger.lot_sizes)
        self._trades: Dict[int, Trade] = {}
        self._matches: List[Match] = []
        self._margin = MarginAccount(available_margin=self._cfg.ledger.initial_available_margin)
        self._next_id = 1
        self._pnl = PnLCalculator(metrics, warn_interval_seconds=self._cfg.telemetry.pnl_warn_interval_seconds)
        for entry in self._cfg.ledger.instruments:
            self.instruments.add(entry.symbol, kind=entry.kind, lot_size=entry.lot_size, mark_price=entry.mark_price)

    # ------------------------------------------------------------------ state
    @property
    def margin(self) -> MarginAccount:
        return self._margin

    def trade(self, trade_id: int) -> Trade:
        try:
            return self._trades[trade_id]
        except KeyError:
            raise UnknownTradeError(trade_id) from None

    def trades(self) -> List[Trade]:
        return sorted(self._trades.values(), key=lambda t: t.id)

    def matches(self) -> List[Match]:
        return list(self._matches)

    def open_trades(self, symbol: Optional[str] = None) -> List[Trade]:
        wanted = symbol.upper() if symbol else None
        return [t for t in self.trades() if t.is_open and (wanted is None or t.symbol == wanted)]

    def load(self) -> None:
        """Restore trades, matches and margin from the store."""

        if self._store is None:
            return
        with self._lock:
            self._trades = {trade.id: trade for trade in self._store.load_trades()}
            self._matches = self._store.load_matches()
            self._margin = self._store.load_margin() or self._margin
            self._next_id = max(self._store.max_trade_id(), max(self._trades, default=0)) + 1
        self._logger.log_event(
            logging.INFO,
            "book_loaded",
            trades=len(self._trades),
            matches=len(self._matches),
            available_margin=self._margin.available_margin,
        )

    # ----------------------------------------------------------- instruments
    def register_instrument(self, symbol: str, **kwargs) -> Instrument:
        kwargs.setdefault("default_lot_sizes", self._cfg.ledger.lot_sizes)
        return self.instruments.register(build_instrument(symbol, **kwargs))

    def update_mark(self, symbol: str, price: float) -> Instrument:
        return self.instruments.update_mark(symbol, price)

    def update_marks(self, marks: Mapping[str, float]) -> None:
        for symbol, price in marks.items():
            self.update_mark(symbol, price)

    # --------------------------------------------------------------- orders
    def place_order(
        self,
        side: Side | str,
        symbol: str,
        amount: int,
        price: Optional[float] = None,
        order_type: OrderType | str = OrderType.MARKET,
    ) -> MatchResult:
        instrument = self.instruments.require(symbol)
        try:
            kind = OrderType(order_type)
            side = Side(side)
        except ValueError as exc:
            self._reject("invalid_order", instrument.symbol, message=str(exc))
            raise ValidationError("invalid_order", str(exc)) from exc
        fill_price = price
        if fill_price is None and kind is OrderType.MARKET:
            fill_price = instrument.mark_price
        if fill_price is None:
            self._reject("price_missing", symbol)
            raise ValidationError("price_missing", f"No price given and no mark known for {instrument.symbol}")
        order = OrderRequest.for_instrument(instrument, side, amount, fill_price, kind)
        with self._lock:
            open_trades = self.open_trades(instrument.symbol)
            start = time.perf_counter()
            try:
                result = submit_order(order, open_trades, trade_id=self._next_id, now=ledger_now())
            except ValidationError as exc:
                self._reject(exc.code, instrument.symbol, message=str(exc))
                raise
            self._commit(result, event="order")
            self._record_latency(time.perf_counter() - start)
        return result

    def modify_position(self, trade_id: int, amount: int, price: Optional[float] = None) -> MatchResult:
        return self._exit(trade_id, amount=amount, price=price, event="modify")

    def close_position(self, trade_id: int, price: Optional[float] = None) -> MatchResult:
        return self._exit(trade_id, amount=None, price=price, event="close")

    def cancel(self, trade_id: int) -> CancelResult:
        with self._lock:
            trade = self.trade(trade_id)
            try:
                result = cancel_trade(trade)
            except ValidationError as exc:
                self._reject(exc.code, trade.symbol, message=str(exc))
                raise
            self._commit(result, event="cancel")
        if self._metrics:
            self._metrics.trades_cancelled_total.inc()
        return result

    # ------------------------------------------------------------------ P&L
    def refresh_pnl(self, now: Optional[dt.datetime] = None) -> PnLSummary:
        with self._lock:
            trades = list(self._trades.values())
            matches = list(self._matches)
        return self._pnl.compute(trades, self.instruments.snapshot(), now=now or ledger_now(), matches=matches)

    # ------------------------------------------------------------- internals
    def _exit(self, trade_id: int, *, amount: Optional[int], price: Optional[float], event: str) -> MatchResult:
        with self._lock:
            trade = self.trade(trade_id)
            exit_price = price
            if exit_price is None:
                instrument = self.instruments.require(trade.symbol)
                exit_price = instrument.mark_price
            if exit_price is None:
                self._reject("price_missing", trade.symbol)
                raise ValidationError("price_missing", f"No price given and no mark known for {trade.symbol}")
            try:
                result = exit_position(trade, exit_price, trade_id=self._next_id, amount=amount, now=ledger_now())
            except ValidationError as exc:
                self._reject(exc.code, trade.symbol, message=str(exc))
                raise
            self._commit(result, event=event)
        return result

    def _commit(self, result: MatchResult | CancelResult, *, event: str) -> None:
        margin = self._margin.apply(result.margin_delta)
        if self._store is not None:
            self._store.commit(result.trades, result.matches, margin, event=event)
        self._trades = apply_result(self._trades, result)
        self._matches.extend(result.matches)
        self._margin = margin
        if isinstance(result, MatchResult):
            self._next_id = max(self._next_id, result.new_trade.id) + 1
            self._log_match(result, event)
        else:
            self._logger.log_event(
                logging.INFO,
                "trade_cancelled",
                trade_id=result.trade.id,
                symbol=result.trade.symbol,
                released=result.trade.remaining_amount,
            )
        if self._metrics:
            self._metrics.publish_margin(margin)
            self._metrics.open_trades.set(sum(1 for t in self._trades.values() if t.is_open))

    def _log_match(self, result: MatchResult, event: str) -> None:
        trade = result.new_trade
        self._logger.log_event(
            logging.INFO,
            "order_accepted",
            action=event,
            trade_id=trade.id,
            symbol=trade.symbol,
            side=trade.side.value,
            order_type=trade.order_type.value,
            amount=trade.original_amount,
            price=trade.price,
            matched=result.matched_amount,
            remaining=trade.remaining_amount,
            status=trade.status.value,
            available_margin=self._margin.available_margin,
        )
        if not self._metrics:
            return
        self._metrics.orders_submitted_total.labels(side=trade.side.value, order_type=trade.order_type.value).inc()
        if result.matched_amount:
            self._metrics.matched_quantity_total.labels(symbol=trade.symbol).inc(result.matched_amount)
        completed = sum(1 for t in result.trades if t.status is TradeStatus.COMPLETED)
        if completed:
            self._metrics.trades_completed_total.inc(completed)

    def _reject(self, code: str, symbol: str, message: Optional[str] = None) -> None:
        if self._metrics:
            self._metrics.inc_orders_rejected(code)
        self._logger.log_event(logging.WARNING, "order_validation_failed", code=code, symbol=symbol, message=message)

    def _record_latency(self, duration: float) -> None:
        if self._metrics:
            self._metrics.submit_latency_ms.observe(duration * 1000.0)


__all__ = ["TradeBook", "UnknownTradeError"]
