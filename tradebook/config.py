from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from tradebook.margin import DEFAULT_AVAILABLE_MARGIN
from tradebook.models import InstrumentKind
from tradebook.time_machine import IST, now as ledger_now

_LOGGER = logging.getLogger("tradebook.config")

DEFAULT_LOT_SIZES: Dict[str, int] = {"NIFTY": 75, "BANKNIFTY": 30}


def _canonical_config() -> Path:
    return Path(os.getenv("APP_CONFIG_PATH", "config/app.yml"))


def _read_config_payload(path: Optional[Path], *, strict: bool) -> Dict[str, Any]:
    cfg_path = path or _canonical_config()
    if not cfg_path.exists():
        if strict:
            raise FileNotFoundError(f"Config {cfg_path} not found")
        _LOGGER.warning("Config file %s missing; using defaults", cfg_path)
        return {}
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {cfg_path} must be a mapping at top level")
    return data


def _lot_sizes(payload: Mapping[str, Any]) -> dict[str, int]:
    lots = dict(DEFAULT_LOT_SIZES)
    for symbol, raw in (payload or {}).items():
        try:
            value = int(raw)
        except (TypeError, ValueError):
            _LOGGER.warning("Ignoring non-integer lot size %r for %s", raw, symbol)
            continue
        if value <= 0:
            _LOGGER.warning("Ignoring non-positive lot size %r for %s", raw, symbol)
            continue
        lots[str(symbol).upper()] = value
    return lots


@dataclass(frozen=True)
class InstrumentSpec:
    symbol: str
    kind: Optional[InstrumentKind] = None
    lot_size: Optional[int] = None
    mark_price: Optional[float] = None

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "InstrumentSpec":
        kind = payload.get("kind")
        lot = payload.get("lot_size")
        mark = payload.get("mark_price")
        return InstrumentSpec(
            symbol=str(payload["symbol"]).upper(),
            kind=InstrumentKind(str(kind).lower()) if kind else None,
            lot_size=int(lot) if lot is not None else None,
            mark_price=float(mark) if mark is not None else None,
        )


@dataclass(frozen=True)
class LedgerConfig:
    initial_available_margin: float = DEFAULT_AVAILABLE_MARGIN
    lot_sizes: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_LOT_SIZES))
    instruments: tuple[InstrumentSpec, ...] = ()

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "LedgerConfig":
        return LedgerConfig(
            initial_available_margin=float(payload.get("initial_available_margin", DEFAULT_AVAILABLE_MARGIN)),
            lot_sizes=_lot_sizes(payload.get("lot_sizes", {})),
            instruments=tuple(InstrumentSpec.from_dict(row) for row in payload.get("instruments", []) or []),
        )


@dataclass(frozen=True)
class TelemetryConfig:
    log_level: str = "INFO"
    metrics_port_env: str = "METRICS_PORT"
    pnl_warn_interval_seconds: float = 60.0

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "TelemetryConfig":
        return TelemetryConfig(
            log_level=str(payload.get("log_level", "INFO")).upper(),
            metrics_port_env=str(payload.get("metrics_port_env", "METRICS_PORT")),
            pnl_warn_interval_seconds=max(float(payload.get("pnl_warn_interval_seconds", 60.0)), 0.0),
        )


@dataclass(frozen=True)
class AppConfig:
    run_id: str
    persistence_path: Optional[Path]
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> "AppConfig":
        run_id = str(raw.get("run_id") or f"ledger-{ledger_now(IST).strftime('%Y%m%d')}")
        path = raw.get("persistence_path")
        return AppConfig(
            run_id=run_id,
            persistence_path=Path(path) if path else None,
            ledger=LedgerConfig.from_dict(raw.get("ledger", {}) or {}),
            telemetry=TelemetryConfig.from_dict(raw.get("telemetry", {}) or {}),
        )

    @staticmethod
    def load(path: Optional[str | Path] = None, *, strict: bool = False) -> "AppConfig":
        raw = _read_config_payload(Path(path) if path else None, strict=strict)
        return AppConfig.from_dict(raw)


__all__ = ["AppConfig", "DEFAULT_LOT_SIZES", "InstrumentSpec", "LedgerConfig", "TelemetryConfig"]
