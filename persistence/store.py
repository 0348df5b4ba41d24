from __future__ import annotations

import datetime as dt
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from persistence.db import connect_db, run_migrations
from tradebook.margin import MarginAccount
from tradebook.models import Match, OptionTerms, OptionType, OrderType, Side, Trade, TradeStatus
from tradebook.time_machine import trading_day, utc_now


def _iso(ts: Optional[dt.datetime]) -> Optional[str]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts.isoformat()


def _parse_ts(raw: Optional[str]) -> Optional[dt.datetime]:
    return dt.datetime.fromisoformat(raw) if raw else None


def trade_to_payload(trade: Trade) -> Dict[str, Any]:
    return {
        "id": trade.id,
        "side": trade.side.value,
        "symbol": trade.symbol,
        "order_type": trade.order_type.value,
        "original_amount": trade.original_amount,
        "remaining_amount": trade.remaining_amount,
        "price": trade.price,
        "created_at": _iso(trade.created_at),
        "status": trade.status.value,
        "completed_at": _iso(trade.completed_at),
        "completed_with": trade.completed_with,
        "lot_size": trade.lot_size,
        "strike_price": trade.option.strike_price if trade.option else None,
        "option_type": trade.option.option_type.value if trade.option else None,
    }


def _row_to_trade(row: sqlite3.Row) -> Trade:
    option = None
    if row["option_type"]:
        option = OptionTerms(strike_price=float(row["strike_price"] or 0.0), option_type=OptionType(row["option_type"]))
    return Trade(
        id=int(row["id"]),
        side=Side(row["side"]),
        symbol=row["symbol"],
        original_amount=int(row["original_amount"]),
        remaining_amount=int(row["remaining_amount"]),
        price=float(row["price"]),
        created_at=_parse_ts(row["created_at"]),
        order_type=OrderType(row["order_type"]),
        status=TradeStatus(row["status"]),
        completed_at=_parse_ts(row["completed_at"]),
        completed_with=row["completed_with"],
        lot_size=int(row["lot_size"] or 1),
        option=option,
    )


class TradeStore:
    """SQLite system of record for trades, matches, margin and the dated ledger."""

    def __init__(self, path: str | Path, run_id: str = "default"):
        self.path = path
        self.run_id = run_id
        self._conn = connect_db(path)
        self._lock = threading.Lock()
        run_migrations(self._conn)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO runs(run_id, started_at) VALUES (?, ?)",
                (self.run_id, _iso(utc_now())),
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------ writes
    def commit(
        self,
        trades: Iterable[Trade],
        matches: Iterable[Match] = (),
        margin: Optional[MarginAccount] = None,
        *,
        event: str = "order",
        ts: Optional[dt.datetime] = None,
    ) -> None:
        """Write one engine result in a single transaction; nothing lands on failure."""

        stamp = _iso(ts or utc_now())
        trade_rows = list(trades)
        with self._lock, self._conn:
            for trade in trade_rows:
                payload = trade_to_payload(trade)
                self._conn.execute(
                    """
                    INSERT INTO trades(run_id, id, side, symbol, order_type, original_amount, remaining_amount, price,
                                       created_at, status, completed_at, completed_with, lot_size, strike_price, option_type)
                    VALUES (:run_id, :id, :side, :symbol, :order_type, :original_amount, :remaining_amount, :price,
                            :created_at, :status, :completed_at, :completed_with, :lot_size, :strike_price, :option_type)
                    ON CONFLICT(run_id, id) DO UPDATE SET
                        remaining_amount=excluded.remaining_amount,
                        status=excluded.status,
                        completed_at=excluded.completed_at,
                        completed_with=excluded.completed_with
                    """,
                    {"run_id": self.run_id, **payload},
                )
                self._conn.execute(
                    """
                    INSERT INTO ledger(run_id, trade_date, trade_id, event, payload, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.run_id,
                        trading_day(trade.created_at).isoformat(),
                        trade.id,
                        event,
                        json.dumps(payload, separators=(",", ":")),
                        stamp,
                    ),
                )
            for match in matches:
                self._conn.execute(
                    """
                    INSERT INTO matches(run_id, incoming_trade_id, resting_trade_id, symbol, amount, buy_price, sell_price, lot_size, ts)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        self.run_id,
                        match.incoming_trade_id,
                        match.resting_trade_id,
                        match.symbol,
                        match.amount,
                        match.buy_price,
                        match.sell_price,
                        match.lot_size,
                        _iso(match.ts),
                    ),
                )
            if margin is not None:
                self._conn.execute(
                    """
                    INSERT INTO margin_account(run_id, available_margin, used_margin, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(run_id) DO UPDATE SET
                        available_margin=excluded.available_margin,
                        used_margin=excluded.used_margin,
                        updated_at=excluded.updated_at
                    """,
                    (self.run_id, margin.available_margin, margin.used_margin, stamp),
                )

    def save_margin(self, margin: MarginAccount) -> None:
        self.commit((), (), margin, event="margin")

    # ------------------------------------------------------------------- reads
    def load_trades(self) -> List[Trade]:
        cur = self._conn.execute("SELECT * FROM trades WHERE run_id=? ORDER BY id", (self.run_id,))
        return [_row_to_trade(row) for row in cur.fetchall()]

    def load_matches(self) -> List[Match]:
        cur = self._conn.execute("SELECT * FROM matches WHERE run_id=? ORDER BY id", (self.run_id,))
        return [
            Match(
                incoming_trade_id=int(row["incoming_trade_id"]),
                resting_trade_id=int(row["resting_trade_id"]),
                symbol=row["symbol"],
                amount=int(row["amount"]),
                buy_price=float(row["buy_price"]),
                sell_price=float(row["sell_price"]),
                ts=_parse_ts(row["ts"]),
                lot_size=int(row["lot_size"] or 1),
            )
            for row in cur.fetchall()
        ]

    def load_margin(self) -> Optional[MarginAccount]:
        row = self._conn.execute(
            "SELECT available_margin, used_margin FROM margin_account WHERE run_id=?",
            (self.run_id,),
        ).fetchone()
        if row is None:
            return None
        return MarginAccount(available_margin=float(row["available_margin"]), used_margin=float(row["used_margin"]))

    def max_trade_id(self) -> int:
        row = self._conn.execute("SELECT MAX(id) FROM trades WHERE run_id=?", (self.run_id,)).fetchone()
        return int(row[0] or 0)

    def ledger(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Ledger entries grouped by trade date (``YYYY-MM-DD``), oldest first, bounds inclusive."""

        query = "SELECT trade_date, trade_id, event, payload, created_at FROM ledger WHERE run_id=?"
        params: list[Any] = [self.run_id]
        if start_date:
            query += " AND trade_date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND trade_date <= ?"
            params.append(end_date)
        query += " ORDER BY trade_date, id"
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in self._conn.execute(query, params).fetchall():
            grouped.setdefault(row["trade_date"], []).append(
                {
                    "trade_id": row["trade_id"],
                    "event": row["event"],
                    "trade": json.loads(row["payload"]),
                    "created_at": row["created_at"],
                }
            )
        return grouped


__all__ = ["TradeStore", "trade_to_payload"]
