import datetime as dt
import json
import logging

from tradebook.logging_utils import RateLimitedLogger, get_logger
from tradebook.time_machine import travel


def test_log_event_renders_json_with_frozen_timestamp(caplog):
    logger = get_logger("unit")
    with caplog.at_level(logging.INFO, logger="tradebook.unit"):
        with travel("2024-07-11T04:00:00+00:00"):
            logger.log_event(logging.INFO, "order_accepted", trade_id=7, price=90.5)
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload == {"event": "order_accepted", "ts": "2024-07-11T04:00:00+00:00", "trade_id": 7, "price": 90.5}


def test_bound_context_is_merged_into_events(caplog):
    logger = get_logger("unit.bound", run_id="r1").bind(account="paper")
    with caplog.at_level(logging.INFO, logger="tradebook.unit.bound"):
        logger.log_event(logging.INFO, "book_loaded", trades=0, run_id="override")
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["account"] == "paper"
    assert payload["run_id"] == "override"
    assert payload["trades"] == 0


def test_disabled_level_emits_nothing(caplog):
    with caplog.at_level(logging.WARNING, logger="tradebook.unit.quiet"):
        get_logger("unit.quiet").log_event(logging.DEBUG, "tick")
    assert caplog.records == []


def test_rate_limited_logger_suppresses_repeats_per_key(caplog):
    limited = RateLimitedLogger(get_logger("unit.rl"), min_interval_seconds=3600)
    with caplog.at_level(logging.WARNING, logger="tradebook.unit.rl"):
        assert limited.log_event(logging.WARNING, "pnl_unknown_instrument", key="TCS", symbol="TCS")
        assert not limited.log_event(logging.WARNING, "pnl_unknown_instrument", key="TCS", symbol="TCS")
        assert limited.log_event(logging.WARNING, "pnl_unknown_instrument", key="INFY", symbol="INFY")
    assert len(caplog.records) == 2


def test_zero_interval_never_suppresses(caplog):
    limited = RateLimitedLogger(get_logger("unit.rl0"), min_interval_seconds=0)
    with caplog.at_level(logging.INFO, logger="tradebook.unit.rl0"):
        for _ in range(3):
            assert limited.log_event(logging.INFO, "tick", key="x")
    assert len(caplog.records) == 3


def test_travel_restores_clock():
    from tradebook import time_machine

    frozen = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    with travel(frozen):
        assert time_machine.now() == frozen
    assert time_machine.now() != frozen
    assert time_machine.trading_day(dt.datetime(2024, 1, 1, 19, 0)) == dt.date(2024, 1, 2)
