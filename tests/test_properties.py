"""
Property-based tests using Hypothesis.

Random order sequences against a single ledger must keep:
- quantity conservation between the incoming trade and the trades it consumed
- status consistent with remaining quantity
- option quantities on lot boundaries
- available plus used margin constant
"""

import datetime as dt

import pytest
from hypothesis import given, settings, strategies as st

from tradebook.margin import MarginAccount
from tradebook.matching import apply_result, submit_order
from tradebook.models import OptionTerms, OptionType, OrderRequest, OrderType, Side, TradeStatus
from tradebook.pnl import compute_pnl
from tradebook.time_machine import IST

T0 = dt.datetime(2024, 7, 11, 9, 15, tzinfo=IST)
LOT = 75
CE = OptionTerms(strike_price=18000.0, option_type=OptionType.CALL)


@st.composite
def option_order(draw):
    side = draw(st.sampled_from([Side.BUY, Side.SELL]))
    lots = draw(st.integers(min_value=1, max_value=6))
    price = draw(st.integers(min_value=100, max_value=20000)) / 100
    order_type = draw(st.sampled_from([OrderType.MARKET, OrderType.MARKET, OrderType.MARKET, OrderType.LIMIT]))
    return OrderRequest(
        side=side,
        symbol="NIFTY18000CE",
        amount=lots * LOT,
        price=price,
        order_type=order_type,
        lot_size=LOT,
        option=CE,
    )


def _replay(orders):
    arena = {}
    results = []
    for idx, order in enumerate(orders, start=1):
        result = submit_order(order, list(arena.values()), trade_id=idx, now=T0 + dt.timedelta(seconds=idx))
        arena = apply_result(arena, result)
        results.append(result)
    return arena, results


@given(st.lists(option_order(), min_size=1, max_size=40))
@settings(max_examples=100, deadline=None)
def test_matched_quantity_is_conserved(orders):
    arena = {}
    for idx, order in enumerate(orders, start=1):
        before = dict(arena)
        result = submit_order(order, list(arena.values()), trade_id=idx, now=T0 + dt.timedelta(seconds=idx))
        consumed = sum(before[t.id].remaining_amount - t.remaining_amount for t in result.updated_trades)
        assert consumed == result.matched_amount
        assert result.new_trade.original_amount - result.new_trade.remaining_amount == result.matched_amount
        assert all(m.amount > 0 for m in result.matches)
        arena = apply_result(arena, result)


@given(st.lists(option_order(), min_size=1, max_size=40))
@settings(max_examples=100, deadline=None)
def test_status_tracks_remaining_and_lots_stay_aligned(orders):
    arena, _ = _replay(orders)
    for trade in arena.values():
        assert 0 <= trade.remaining_amount <= trade.original_amount
        assert trade.remaining_amount % LOT == 0
        if trade.remaining_amount == 0:
            assert trade.status is TradeStatus.COMPLETED
            assert trade.completed_at is not None
            assert trade.completed_with is not None
        elif trade.remaining_amount < trade.original_amount:
            assert trade.status is TradeStatus.PARTIALLY_COMPLETED
        else:
            assert trade.status is TradeStatus.EXECUTED
            assert trade.completed_with is None


@given(st.lists(option_order(), min_size=1, max_size=40))
@settings(max_examples=100, deadline=None)
def test_one_side_is_flat_after_every_market_order(orders):
    arena, _ = _replay([o for o in orders if o.order_type is OrderType.MARKET])
    open_sides = {t.side for t in arena.values() if t.is_open}
    assert len(open_sides) <= 1


@given(st.lists(option_order(), min_size=1, max_size=40))
@settings(max_examples=100, deadline=None)
def test_margin_total_is_conserved(orders):
    _, results = _replay(orders)
    account = MarginAccount()
    start_total = account.available_margin + account.used_margin
    for result in results:
        account = account.apply(result.margin_delta)
    assert account.available_margin + account.used_margin == pytest.approx(start_total)


@given(st.lists(option_order(), min_size=1, max_size=40), st.integers(min_value=100, max_value=20000))
@settings(max_examples=50, deadline=None)
def test_realized_equals_sum_of_matches_and_is_repeatable(orders, mark_paise):
    arena, results = _replay(orders)
    matches = [m for r in results for m in r.matches]
    marks = {"NIFTY18000CE": mark_paise / 100}
    first = compute_pnl(arena.values(), marks, now=T0, matches=matches)
    second = compute_pnl(arena.values(), marks, now=T0, matches=matches)
    assert first == second
    assert first.realized == pytest.approx(sum(m.realized for m in matches))
    assert first.total_pnl == pytest.approx(first.realized + first.unrealized)
