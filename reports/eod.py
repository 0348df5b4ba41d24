"""
End-of-day ledger report.

Reads the trade store and writes two CSV files:
  - ``<out>``: realized P&L per trading day and symbol, built from match records
  - ``<out stem>_ledger<suffix>``: the dated ledger, one row per trade event
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable, Optional

import pandas as pd

from persistence import TradeStore
from tradebook.config import AppConfig
from tradebook.logging_utils import configure_logging, get_logger
from tradebook.models import Match
from tradebook.time_machine import trading_day

_SUMMARY_COLUMNS = ["trade_date", "symbol", "matched_qty", "realized_pnl", "fills"]
_LEDGER_COLUMNS = ["trade_date", "trade_id", "event", "side", "symbol", "original_amount", "remaining_amount", "price", "status", "created_at"]


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate end-of-day ledger and realized PnL report")
    parser.add_argument("--config", type=Path, default=None, help="YAML config (defaults to APP_CONFIG_PATH)")
    parser.add_argument("--db", type=Path, default=None, help="SQLite DB path (defaults to persistence_path)")
    parser.add_argument("--run-id", default=None, help="Ledger run identifier (defaults to run_id)")
    parser.add_argument("--out", type=Path, required=True, help="Output CSV path for the PnL summary")
    parser.add_argument("--start", default=None, help="First trade date (YYYY-MM-DD), inclusive")
    parser.add_argument("--end", default=None, help="Last trade date (YYYY-MM-DD), inclusive")
    return parser.parse_args(argv)


def realized_by_day(matches: Iterable[Match], start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
    rows = [
        {
            "trade_date": trading_day(m.ts).isoformat(),
            "symbol": m.symbol,
            "matched_qty": m.amount,
            "realized_pnl": m.realized,
        }
        for m in matches
    ]
    if not rows:
        return pd.DataFrame(columns=_SUMMARY_COLUMNS)
    frame = pd.DataFrame(rows)
    if start:
        frame = frame[frame["trade_date"] >= start]
    if end:
        frame = frame[frame["trade_date"] <= end]
    if frame.empty:
        return pd.DataFrame(columns=_SUMMARY_COLUMNS)
    grouped = (
        frame.groupby(["trade_date", "symbol"], as_index=False)
        .agg(matched_qty=("matched_qty", "sum"), realized_pnl=("realized_pnl", "sum"), fills=("matched_qty", "size"))
        .sort_values(["trade_date", "symbol"])
        .reset_index(drop=True)
    )
    return grouped[_SUMMARY_COLUMNS]


def ledger_frame(store: TradeStore, start: Optional[str] = None, end: Optional[str] = None) -> pd.DataFrame:
    rows = []
    for trade_date, entries in store.ledger(start, end).items():
        for entry in entries:
            trade = entry["trade"]
            rows.append(
                {
                    "trade_date": trade_date,
                    "trade_id": entry["trade_id"],
                    "event": entry["event"],
                    "side": trade["side"],
                    "symbol": trade["symbol"],
                    "original_amount": trade["original_amount"],
                    "remaining_amount": trade["remaining_amount"],
                    "price": trade["price"],
                    "status": trade["status"],
                    "created_at": trade["created_at"],
                }
            )
    return pd.DataFrame(rows, columns=_LEDGER_COLUMNS)


def write_report(store: TradeStore, out: Path, start: Optional[str] = None, end: Optional[str] = None) -> tuple[Path, Path]:
    out.parent.mkdir(parents=True, exist_ok=True)
    summary = realized_by_day(store.load_matches(), start, end)
    summary.to_csv(out, index=False, float_format="%.2f")
    ledger_path = out.with_name(f"{out.stem}_ledger{out.suffix}")
    ledger_frame(store, start, end).to_csv(ledger_path, index=False)
    return out, ledger_path


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    cfg = AppConfig.load(args.config)
    configure_logging(cfg.telemetry.log_level)
    db_path = args.db or cfg.persistence_path
    run_id = args.run_id or cfg.run_id
    if db_path is None or not Path(db_path).exists():
        raise SystemExit(f"No ledger database at {db_path}")
    store = TradeStore(db_path, run_id=run_id)
    try:
        if store.max_trade_id() == 0:
            raise SystemExit(f"No trades recorded for run {run_id} in {db_path}")
        summary_path, ledger_path = write_report(store, args.out, args.start, args.end)
    finally:
        store.close()
    get_logger("reports.eod").log_event(logging.INFO, "eod_report_written", summary=str(summary_path), ledger=str(ledger_path))


if __name__ == "__main__":  # pragma: no cover
    main()
