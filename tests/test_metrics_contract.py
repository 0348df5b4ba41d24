import socket
import time
import urllib.request

from prometheus_client import CollectorRegistry

from tradebook.margin import MarginAccount
from tradebook.metrics import LedgerMetrics, start_metrics_server
from tradebook.pnl import PnLSummary, SymbolPnL


def test_metrics_surface_required_series():
    registry = CollectorRegistry()
    metrics = LedgerMetrics(registry)
    metrics.orders_submitted_total.labels(side="buy", order_type="market").inc()
    metrics.inc_orders_rejected("lot_multiple")
    metrics.matched_quantity_total.labels(symbol="NIFTY18000CE").inc(75)
    metrics.trades_completed_total.inc(2)
    metrics.submit_latency_ms.observe(0.3)
    metrics.publish_margin(MarginAccount(available_margin=993_250.0, used_margin=6750.0))
    row = SymbolPnL(symbol="NIFTY18000CE", realized=375.0, unrealized=0.0)
    metrics.publish_pnl(PnLSummary(total_pnl=375.0, realized=375.0, per_symbol={"NIFTY18000CE": row}))

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    assert start_metrics_server(port, registry=registry) == port
    time.sleep(0.1)
    resp = urllib.request.urlopen(f"http://127.0.0.1:{port}/metrics", timeout=2)
    payload = resp.read().decode("utf-8")
    required = [
        "ledger_orders_submitted_total",
        "ledger_orders_rejected_total",
        "ledger_matched_quantity_total",
        "ledger_trades_completed_total",
        "ledger_margin_available_rupees",
        "ledger_margin_used_rupees",
        "ledger_pnl_total_rupees",
        "ledger_pnl_symbol_rupees",
        "ledger_submit_latency_ms",
    ]
    for metric_name in required:
        assert metric_name in payload
    assert registry.get_sample_value("ledger_pnl_symbol_rupees", {"symbol": "NIFTY18000CE", "kind": "realized"}) == 375.0
