from persistence.store import TradeStore

__all__ = ["TradeStore"]
