from tradebook.book import TradeBook, UnknownTradeError
from tradebook.instruments import InstrumentRegistry, UnknownInstrumentError
from tradebook.margin import MarginAccount, MarginDelta
from tradebook.matching import MatchResult, ValidationError, cancel_trade, close_position, submit_order
from tradebook.models import Match, OrderRequest, OrderType, Side, Trade, TradeStatus
from tradebook.pnl import PnLSummary, compute_pnl

__all__ = [
    "InstrumentRegistry",
    "MarginAccount",
    "MarginDelta",
    "Match",
    "MatchResult",
    "OrderRequest",
    "OrderType",
    "PnLSummary",
    "Side",
    "Trade",
    "TradeBook",
    "TradeStatus",
    "UnknownInstrumentError",
    "UnknownTradeError",
    "ValidationError",
    "cancel_trade",
    "close_position",
    "compute_pnl",
    "submit_order",
]
