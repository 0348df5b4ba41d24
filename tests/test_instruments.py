import pytest

from tradebook.instruments import InstrumentRegistry, UnknownInstrumentError, build_instrument, parse_option_symbol
from tradebook.models import InstrumentKind, Listing, OptionContract, OptionType


@pytest.mark.parametrize(
    "symbol, expected",
    [
        ("NIFTY18000CE", ("NIFTY", 18000.0, OptionType.CALL)),
        ("banknifty-48500pe", ("BANKNIFTY", 48500.0, OptionType.PUT)),
        ("M&M1500.5CE", ("M&M", 1500.5, OptionType.CALL)),
    ],
)
def test_parse_option_symbol(symbol, expected):
    assert parse_option_symbol(symbol) == expected


@pytest.mark.parametrize("symbol", ["RELIANCE", "NIFTY", "NIFTY18000XX", "18000CE"])
def test_parse_option_symbol_rejects_non_options(symbol):
    assert parse_option_symbol(symbol) is None


def test_option_contract_takes_lot_size_from_underlying():
    inst = build_instrument("nifty18000ce", mark_price=100.0, default_lot_sizes={"NIFTY": 75})
    assert isinstance(inst, OptionContract)
    assert inst.symbol == "NIFTY18000CE"
    assert inst.kind is InstrumentKind.OPTION
    assert inst.lot_size == 75
    assert inst.terms.strike_price == 18000.0
    assert inst.terms.option_type is OptionType.CALL


def test_equity_and_index_listings_carry_no_option_fields():
    equity = build_instrument("RELIANCE", mark_price=2900.0)
    index = build_instrument("BANKNIFTY", kind="index", lot_size=30)
    assert isinstance(equity, Listing)
    assert equity.kind is InstrumentKind.EQUITY
    assert not equity.lot_based
    assert not hasattr(equity, "terms")
    assert index.kind is InstrumentKind.INDEX
    assert index.lot_based


def test_build_rejects_bad_inputs():
    with pytest.raises(ValueError):
        build_instrument("RELIANCE", kind="option")
    with pytest.raises(ValueError):
        build_instrument("RELIANCE", lot_size=-5)


def test_registry_updates_marks_without_mutating_snapshot():
    registry = InstrumentRegistry({"NIFTY": 75})
    registry.add("NIFTY18000CE")
    before = registry.snapshot()
    updated = registry.update_mark("nifty18000ce", 101.5)
    assert updated.mark_price == 101.5
    assert before["NIFTY18000CE"].mark_price is None
    assert registry.require("NIFTY18000CE").mark_price == 101.5
    assert "NIFTY18000CE" in registry
    assert len(registry) == 1
    assert [inst.symbol for inst in registry] == ["NIFTY18000CE"]


def test_registry_unknown_symbol():
    registry = InstrumentRegistry()
    assert registry.get("TCS") is None
    with pytest.raises(UnknownInstrumentError) as exc:
        registry.require("TCS")
    assert exc.value.symbol == "TCS"
    with pytest.raises(UnknownInstrumentError):
        registry.update_mark("TCS", 10.0)
