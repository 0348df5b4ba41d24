"""
Command-line entry point for the paper ledger.

Examples::

    tradebook place buy NIFTY18000CE 75 --price 90
    tradebook close 1 --price 95
    tradebook pnl --mark NIFTY18000CE=100
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry

from persistence import TradeStore
from persistence.store import trade_to_payload
from tradebook.book import TradeBook, UnknownTradeError
from tradebook.config import AppConfig
from tradebook.instruments import UnknownInstrumentError
from tradebook.logging_utils import configure_logging, get_logger
from tradebook.matching import CancelResult, MatchResult, ValidationError
from tradebook.metrics import LedgerMetrics, start_metrics_server
from tradebook.pnl import PnLSummary


def build_book(cfg: AppConfig, *, serve_metrics: bool = False) -> Tuple[TradeBook, Optional[TradeStore]]:
    """Wire config, store and metrics into a loaded :class:`TradeBook`."""

    configure_logging(cfg.telemetry.log_level)
    store = TradeStore(cfg.persistence_path, run_id=cfg.run_id) if cfg.persistence_path else None
    metrics = LedgerMetrics(CollectorRegistry())
    if serve_metrics:
        port = os.getenv(cfg.telemetry.metrics_port_env)
        start_metrics_server(int(port) if port else None, registry=metrics.registry)
    book = TradeBook(cfg, store=store, metrics=metrics)
    book.load()
    return book, store


def _parse_marks(raw: List[str]) -> Dict[str, float]:
    marks: Dict[str, float] = {}
    for item in raw:
        symbol, sep, price = item.partition("=")
        if not sep:
            raise SystemExit(f"--mark expects SYMBOL=PRICE, got {item!r}")
        marks[symbol.strip().upper()] = float(price)
    return marks


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Virtual trade ledger")
    parser.add_argument("--config", type=Path, default=None, help="YAML config (defaults to APP_CONFIG_PATH)")
    parser.add_argument("--serve-metrics", action="store_true", help="Expose Prometheus metrics while running")
    parser.add_argument("--mark", action="append", default=[], help="SYMBOL=PRICE mark update, repeatable")
    sub = parser.add_subparsers(dest="command", required=True)

    place = sub.add_parser("place", help="Submit an order")
    place.add_argument("side", choices=["buy", "sell"])
    place.add_argument("symbol")
    place.add_argument("amount", type=int)
    place.add_argument("--price", type=float, default=None)
    place.add_argument("--order-type", default="market", choices=["market", "limit", "stop", "stoplimit"])

    close = sub.add_parser("close", help="Close a trade's remaining quantity")
    close.add_argument("trade_id", type=int)
    close.add_argument("--price", type=float, default=None)

    modify = sub.add_parser("modify", help="Exit part of a trade")
    modify.add_argument("trade_id", type=int)
    modify.add_argument("amount", type=int)
    modify.add_argument("--price", type=float, default=None)

    cancel = sub.add_parser("cancel", help="Cancel an open trade")
    cancel.add_argument("trade_id", type=int)

    sub.add_parser("pnl", help="Print the current P&L summary")
    sub.add_parser("trades", help="List trades")
    return parser.parse_args(argv)


def _summary_payload(summary: PnLSummary) -> dict:
    return {
        "total_pnl": summary.total_pnl,
        "day_pnl": summary.day_pnl,
        "realized": summary.realized,
        "unrealized": summary.unrealized,
        "per_symbol": {symbol: asdict(row) for symbol, row in summary.per_symbol.items()},
        "skipped": list(summary.skipped),
    }


def run(args: argparse.Namespace, book: TradeBook) -> dict:
    book.update_marks(_parse_marks(args.mark))
    if args.command == "place":
        result: MatchResult | CancelResult = book.place_order(
            args.side, args.symbol, args.amount, args.price, order_type=args.order_type
        )
    elif args.command == "close":
        result = book.close_position(args.trade_id, args.price)
    elif args.command == "modify":
        result = book.modify_position(args.trade_id, args.amount, args.price)
    elif args.command == "cancel":
        result = book.cancel(args.trade_id)
    elif args.command == "trades":
        return {"trades": [trade_to_payload(t) for t in book.trades()]}
    else:
        return _summary_payload(book.refresh_pnl())
    payload = {"trades": [trade_to_payload(t) for t in result.trades], "matched": sum(m.amount for m in result.matches)}
    payload["margin"] = asdict(book.margin)
    return payload


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    cfg = AppConfig.load(args.config)
    book, store = build_book(cfg, serve_metrics=args.serve_metrics)
    try:
        payload = run(args, book)
    except ValidationError as exc:
        raise SystemExit(f"Rejected ({exc.code}): {exc}") from exc
    except UnknownInstrumentError as exc:
        raise SystemExit(str(exc)) from exc
    except UnknownTradeError as exc:
        raise SystemExit(f"No trade with id {exc.args[0]}") from exc
    finally:
        if store is not None:
            store.close()
    get_logger("app").log_event(logging.INFO, "command_done", command=args.command)
    print(json.dumps(payload, indent=2, default=str))


if __name__ == "__main__":  # pragma: no cover
    main()
