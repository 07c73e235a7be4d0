"""SQLite persistence for closed trades and signals."""

from .trade_store import StoredSignal, StoredTrade, TradeStore

__all__ = ["StoredSignal", "StoredTrade", "TradeStore"]
