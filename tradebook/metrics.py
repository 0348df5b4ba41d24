from __future__ import annotations

import logging
import os
from typing import Any, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from tradebook.margin import MarginAccount


class LedgerMetrics:
    """Prometheus collectors for order flow, matching, margin and P&L."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry
        registry_kwargs = {"registry": registry} if registry is not None else {}
        self.orders_submitted_total = Counter(
            "ledger_orders_submitted_total", "Orders accepted by the matching engine", ["side", "order_type"], **registry_kwargs
        )
        self.orders_rejected_total = Counter("ledger_orders_rejected_total", "Orders rejected by validation", ["reason"], **registry_kwargs)
        self.matched_quantity_total = Counter("ledger_matched_quantity_total", "Quantity netted against open trades", ["symbol"], **registry_kwargs)
        self.trades_completed_total = Counter("ledger_trades_completed_total", "Trades fully closed out", **registry_kwargs)
        self.trades_cancelled_total = Counter("ledger_trades_cancelled_total", "Trades cancelled", **registry_kwargs)
        self.open_trades = Gauge("ledger_open_trades", "Trades with open quantity", **registry_kwargs)
        self.margin_available = Gauge("ledger_margin_available_rupees", "Available margin", **registry_kwargs)
        self.margin_used = Gauge("ledger_margin_used_rupees", "Used margin", **registry_kwargs)
        self.pnl_total = Gauge("ledger_pnl_total_rupees", "Realized plus unrealized PnL", **registry_kwargs)
        self.pnl_day = Gauge("ledger_pnl_day_rupees", "PnL attributable to the current trading day", **registry_kwargs)
        self.pnl_realized = Gauge("ledger_pnl_realized_rupees", "Realized PnL", **registry_kwargs)
        self.pnl_unrealized = Gauge("ledger_pnl_unrealized_rupees", "Unrealized PnL", **registry_kwargs)
        self.pnl_symbol = Gauge("ledger_pnl_symbol_rupees", "PnL per symbol", ["symbol", "kind"], **registry_kwargs)
        self.pnl_skipped_total = Counter(
            "ledger_pnl_skipped_total", "PnL passes that skipped a symbol without a mark", ["symbol"], **registry_kwargs
        )
        self.submit_latency_ms = Histogram(
            "ledger_submit_latency_ms",
            "Order submit latency in ms",
            buckets=(0.1, 0.5, 1, 2, 5, 10, 20, 50, 100),
            **registry_kwargs,
        )

    def inc_orders_rejected(self, reason: str) -> None:
        self.orders_rejected_total.labels(reason=reason).inc()

    def publish_margin(self, account: MarginAccount) -> None:
        self.margin_available.set(account.available_margin)
        self.margin_used.set(account.used_margin)

    def publish_pnl(self, summary: Any) -> None:
        self.pnl_total.set(summary.total_pnl)
        self.pnl_day.set(summary.day_pnl)
        self.pnl_realized.set(summary.realized)
        self.pnl_unrealized.set(summary.unrealized)
        for symbol, row in summary.per_symbol.items():
            self.pnl_symbol.labels(symbol=symbol, kind="realized").set(row.realized)
            self.pnl_symbol.labels(symbol=symbol, kind="unrealized").set(row.unrealized)


def start_metrics_server(port: Optional[int] = None, registry: Optional[CollectorRegistry] = None) -> int:
    addr = os.getenv("METRICS_HOST", "0.0.0.0")
    bound = int(port or os.getenv("METRICS_PORT", "9103"))
    registry_kwargs = {"registry": registry} if registry is not None else {}
    start_http_server(bound, addr=addr, **registry_kwargs)
    logging.getLogger("tradebook.metrics").info("metrics exporter listening on %s:%s", addr, bound)
    return bound


__all__ = ["LedgerMetrics", "start_metrics_server"]
