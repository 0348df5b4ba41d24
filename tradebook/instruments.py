from __future__ import annotations

import re
import threading
from typing import Dict, Iterator, Mapping, Optional

from tradebook.models import Instrument, InstrumentKind, Listing, OptionContract, OptionTerms, OptionType

_OPTION_SYMBOL = re.compile(r"^(?P<underlying>[A-Z&]+?)-?(?P<strike>\d+(?:\.\d+)?)(?P<opt>CE|PE)$")


class UnknownInstrumentError(KeyError):
    def __init__(self, symbol: str):
        super().__init__(symbol)
        self.symbol = symbol

    def __str__(self) -> str:
        return f"No instrument or mark price known for {self.symbol}"


def parse_option_symbol(symbol: str) -> Optional[tuple[str, float, OptionType]]:
    """Split ``NIFTY18000CE`` style symbols into underlying, strike and type."""

    match = _OPTION_SYMBOL.match(symbol.strip().upper())
    if not match:
        return None
    return match.group("underlying"), float(match.group("strike")), OptionType(match.group("opt"))


def build_instrument(
    symbol: str,
    *,
    kind: InstrumentKind | str | None = None,
    lot_size: Optional[int] = None,
    mark_price: Optional[float] = None,
    default_lot_sizes: Optional[Mapping[str, int]] = None,
) -> Instrument:
    symbol = symbol.strip().upper()
    lots = default_lot_sizes or {}
    resolved_kind = InstrumentKind(kind) if kind else None
    parsed = parse_option_symbol(symbol) if resolved_kind in (None, InstrumentKind.OPTION) else None
    if resolved_kind == InstrumentKind.OPTION and parsed is None:
        raise ValueError(f"Unrecognized option symbol: {symbol}")
    if parsed:
        underlying, strike, opt_type = parsed
        lot = int(lot_size or lots.get(underlying) or 1)
        if lot <= 0:
            raise ValueError(f"Lot size must be a positive integer, got {lot}")
        return OptionContract(
            symbol=symbol,
            underlying=underlying,
            terms=OptionTerms(strike_price=strike, option_type=opt_type),
            lot_size=lot,
            mark_price=mark_price,
        )
    lot = int(lot_size or 1)
    if lot <= 0:
        raise ValueError(f"Lot size must be a positive integer, got {lot}")
    return Listing(
        symbol=symbol,
        kind=resolved_kind or InstrumentKind.EQUITY,
        lot_size=lot,
        mark_price=mark_price,
    )


class InstrumentRegistry:
    """Symbol -> instrument map whose marks are replaced on every price update."""

    def __init__(self, default_lot_sizes: Optional[Mapping[str, int]] = None):
        self._instruments: Dict[str, Instrument] = {}
        self._lock = threading.Lock()
        self._default_lots = {str(k).upper(): int(v) for k, v in (default_lot_sizes or {}).items()}

    def register(self, instrument: Instrument) -> Instrument:
        with self._lock:
            self._instruments[instrument.symbol] = instrument
        return instrument

    def add(self, symbol: str, **kwargs) -> Instrument:
        kwargs.setdefault("default_lot_sizes", self._default_lots)
        return self.register(build_instrument(symbol, **kwargs))

    def get(self, symbol: str) -> Optional[Instrument]:
        return self._instruments.get(symbol.upper())

    def require(self, symbol: str) -> Instrument:
        instrument = self.get(symbol)
        if instrument is None:
            raise UnknownInstrumentError(symbol)
        return instrument

    def update_mark(self, symbol: str, price: float) -> Instrument:
        with self._lock:
            key = symbol.upper()
            current = self._instruments.get(key)
            if current is None:
                raise UnknownInstrumentError(symbol)
            updated = current.with_mark(price)
            self._instruments[key] = updated
            return updated

    def snapshot(self) -> Dict[str, Instrument]:
        with self._lock:
            return dict(self._instruments)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._instruments

    def __iter__(self) -> Iterator[Instrument]:
        return iter(self.snapshot().values())

    def __len__(self) -> int:
        return len(self._instruments)


__all__ = ["InstrumentRegistry", "UnknownInstrumentError", "build_instrument", "parse_option_symbol"]
