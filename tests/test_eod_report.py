import datetime as dt

import pandas as pd
import pytest

from persistence import TradeStore
from reports import eod
from tradebook.matching import submit_order
from tradebook.models import OrderRequest, Side
from tradebook.time_machine import IST

DAY1 = dt.datetime(2024, 7, 10, 10, 0, tzinfo=IST)
DAY2 = dt.datetime(2024, 7, 11, 10, 0, tzinfo=IST)


def _order(side, amount, price, symbol="RELIANCE"):
    return OrderRequest(side=side, symbol=symbol, amount=amount, price=price)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "ledger.sqlite"
    store = TradeStore(path, run_id="eod")
    arena = []
    steps = [
        (_order(Side.BUY, 150, 100.0), DAY1),
        (_order(Side.SELL, 50, 105.0), DAY1 + dt.timedelta(minutes=5)),
        (_order(Side.SELL, 100, 98.0), DAY2),
        (_order(Side.BUY, 10, 3900.0, symbol="TCS"), DAY2),
    ]
    for idx, (order, ts) in enumerate(steps, start=1):
        result = submit_order(order, [t for t in arena if t.is_open], trade_id=idx, now=ts)
        store.commit(result.trades, result.matches)
        arena = [t for t in arena if t.id not in {u.id for u in result.trades}] + list(result.trades)
    store.close()
    return path


def test_realized_by_day_groups_matches(db_path):
    store = TradeStore(db_path, run_id="eod")
    try:
        frame = eod.realized_by_day(store.load_matches())
    finally:
        store.close()
    assert list(frame.columns) == ["trade_date", "symbol", "matched_qty", "realized_pnl", "fills"]
    rows = frame.to_dict("records")
    assert rows[0]["trade_date"] == "2024-07-10"
    assert rows[0]["realized_pnl"] == pytest.approx(250.0)
    assert rows[1]["trade_date"] == "2024-07-11"
    assert rows[1]["matched_qty"] == 100
    assert rows[1]["realized_pnl"] == pytest.approx(-200.0)


def test_realized_by_day_handles_empty_and_out_of_range(db_path):
    assert eod.realized_by_day([]).empty
    assert list(eod.realized_by_day([]).columns) == ["trade_date", "symbol", "matched_qty", "realized_pnl", "fills"]
    store = TradeStore(db_path, run_id="eod")
    try:
        assert eod.realized_by_day(store.load_matches(), start="2024-08-01").empty
    finally:
        store.close()


def test_main_writes_summary_and_ledger(db_path, tmp_path):
    out = tmp_path / "reports" / "pnl.csv"
    eod.main(["--db", str(db_path), "--run-id", "eod", "--out", str(out), "--start", "2024-07-11"])
    summary = pd.read_csv(out)
    assert summary["trade_date"].tolist() == ["2024-07-11"]
    ledger = pd.read_csv(out.with_name("pnl_ledger.csv"))
    assert set(ledger["trade_date"]) == {"2024-07-11"}
    assert sorted(ledger["trade_id"].unique().tolist()) == [3, 4]


def test_main_rejects_missing_db(tmp_path):
    with pytest.raises(SystemExit):
        eod.main(["--db", str(tmp_path / "nope.sqlite"), "--out", str(tmp_path / "x.csv")])


def test_main_defaults_db_and_run_from_config(db_path, tmp_path, monkeypatch):
    cfg_file = tmp_path / "app.yml"
    cfg_file.write_text(f"run_id: eod\npersistence_path: {db_path}\n", encoding="utf-8")
    monkeypatch.setenv("APP_CONFIG_PATH", str(cfg_file))
    out = tmp_path / "cfg" / "pnl.csv"
    eod.main(["--out", str(out)])
    summary = pd.read_csv(out)
    assert summary["trade_date"].tolist() == ["2024-07-10", "2024-07-11"]


def test_main_refuses_run_without_trades(db_path, tmp_path):
    out = tmp_path / "empty.csv"
    with pytest.raises(SystemExit) as exc:
        eod.main(["--db", str(db_path), "--run-id", "paper-ledger", "--out", str(out)])
    assert "paper-ledger" in str(exc.value)
    assert not out.exists()
