"""Trade and signal persistence for audit trails and replay."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import structlog

from ..errors import PersistenceError
from ..events import Event, EventBus, PositionClosed, SignalGenerated
from ..signals.models import StrategySignal
from ..state.models import ClosedTrade


@dataclass
class StoredTrade:
    """Closed trade as read back from the store."""
    id: int
    position_id: str
    symbol: str
    side: str
    entry_price: float
    exit_price: float
    quantity: float
    opened_at: str
    closed_at: str
    realized_pnl: float
    exit_reason: str
    outcome: str
    trade_data: dict[str, Any]
    created_at: str


@dataclass
class StoredSignal:
    id: int
    timestamp: str
    action: str
    confidence: float
    quality: str
    signal_data: dict[str, Any]
    created_at: str


class TradeStore:
    """SQLite-backed ledger of closed trades and actionable signals."""

    def __init__(self, db_path: str = "trades.db"):
        self.db_path = Path(db_path)
        self.logger = structlog.get_logger("trade.store")
        self._lock = threading.Lock()

        self._init_database()

    def _init_database(self) -> None:
        with self._get_connection("init") as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    position_id TEXT NOT NULL UNIQUE,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    entry_price REAL NOT NULL,
                    exit_price REAL NOT NULL,
                    quantity REAL NOT NULL,
                    opened_at TEXT NOT NULL,
                    closed_at TEXT NOT NULL,
                    realized_pnl REAL NOT NULL,
                    exit_reason TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    trade_data TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS signals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    action TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    quality TEXT NOT NULL,
                    signal_data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE(timestamp, action)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_closed_at ON trades(closed_at)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_trades_exit_reason ON trades(exit_reason)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_signals_timestamp ON signals(timestamp)
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self, operation: str):
        """Yield a connection; sqlite failures surface as PersistenceError."""
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            yield conn
        except sqlite3.Error as e:
            if conn:
                conn.rollback()
            self.logger.error("Database error", operation=operation, error=str(e))
            raise PersistenceError(
                f"Database error during {operation}: {e}",
                operation=operation,
                target=str(self.db_path),
            ) from e
        finally:
            if conn:
                conn.close()

    def store_trade(self, trade: ClosedTrade) -> bool:
        """
        Store a closed trade.

        Returns False when a trade with the same position id is already
        stored; the ledger never holds a position twice.
        """
        with self._lock:
            with self._get_connection("store_trade") as conn:
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO trades (
                        position_id, symbol, side, entry_price, exit_price,
                        quantity, opened_at, closed_at, realized_pnl,
                        exit_reason, outcome, trade_data, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    trade.position_id,
                    trade.symbol,
                    trade.side.value,
                    trade.entry_price,
                    trade.exit_price,
                    trade.quantity,
                    trade.opened_at.isoformat(),
                    trade.closed_at.isoformat(),
                    trade.realized_pnl,
                    trade.exit_reason.value,
                    trade.outcome.value,
                    json.dumps(trade.to_dict(), default=str),
                    datetime.now(timezone.utc).isoformat(),
                ))
                conn.commit()

        stored = cursor.rowcount > 0
        if stored:
            self.logger.info(
                "Trade stored",
                position_id=trade.position_id,
                exit_reason=trade.exit_reason.value,
                realized_pnl=round(trade.realized_pnl, 4),
            )
        else:
            self.logger.debug("Duplicate trade ignored", position_id=trade.position_id)
        return stored

    def store_signal(self, signal: StrategySignal) -> Optional[int]:
        """Store an actionable signal; NO_TRADE and duplicates are skipped."""
        if not signal.is_actionable:
            return None

        with self._lock:
            with self._get_connection("store_signal") as conn:
                cursor = conn.execute("""
                    INSERT OR IGNORE INTO signals (
                        timestamp, action, confidence, quality, signal_data, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    signal.timestamp.isoformat(),
                    signal.action.value,
                    signal.confidence,
                    signal.quality.value,
                    json.dumps(signal.to_dict(), default=str),
                    datetime.now(timezone.utc).isoformat(),
                ))
                conn.commit()

        if cursor.rowcount == 0:
            return None
        return cursor.lastrowid

    def get_trade(self, position_id: str) -> Optional[StoredTrade]:
        with self._get_connection("get_trade") as conn:
            row = conn.execute("""
                SELECT * FROM trades WHERE position_id = ?
            """, (position_id,)).fetchone()

        return self._row_to_stored_trade(row) if row else None

    def get_trades(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: int = 1000
    ) -> list[StoredTrade]:
        """Trades ordered by close time, optionally within [start_time, end_time]."""
        query = "SELECT * FROM trades"
        params: list[Any] = []
        if start_time is not None and end_time is not None:
            query += " WHERE closed_at BETWEEN ? AND ?"
            params.extend([start_time, end_time])
        query += " ORDER BY closed_at, id LIMIT ?"
        params.append(limit)

        with self._get_connection("get_trades") as conn:
            rows = conn.execute(query, params).fetchall()

        return [self._row_to_stored_trade(row) for row in rows]

    def get_signals(self, limit: int = 100) -> list[StoredSignal]:
        with self._get_connection("get_signals") as conn:
            rows = conn.execute("""
                SELECT * FROM signals ORDER BY timestamp LIMIT ?
            """, (limit,)).fetchall()

        return [self._row_to_stored_signal(row) for row in rows]

    def get_stats(self) -> dict[str, Any]:
        with self._get_connection("get_stats") as conn:
            total_trades = conn.execute("SELECT COUNT(*) FROM trades").fetchone()[0]
            total_pnl = conn.execute("SELECT COALESCE(SUM(realized_pnl), 0) FROM trades").fetchone()[0]

            exit_reasons = {}
            for row in conn.execute("""
                SELECT exit_reason, COUNT(*) as count FROM trades GROUP BY exit_reason
            """):
                exit_reasons[row[0]] = row[1]

            total_signals = conn.execute("SELECT COUNT(*) FROM signals").fetchone()[0]

        return {
            "total_trades": total_trades,
            "total_pnl": total_pnl,
            "trades_by_exit_reason": exit_reasons,
            "total_signals": total_signals,
        }

    def on_event(self, event: Event) -> None:
        """EventBus observer: persists closed trades and actionable signals."""
        if isinstance(event, PositionClosed) and event.trade is not None:
            self.store_trade(event.trade)
        elif isinstance(event, SignalGenerated) and event.signal is not None:
            self.store_signal(event.signal)

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(self.on_event, PositionClosed.event_type)
        bus.subscribe(self.on_event, SignalGenerated.event_type)

    def _row_to_stored_trade(self, row: sqlite3.Row) -> StoredTrade:
        return StoredTrade(
            id=row["id"],
            position_id=row["position_id"],
            symbol=row["symbol"],
            side=row["side"],
            entry_price=row["entry_price"],
            exit_price=row["exit_price"],
            quantity=row["quantity"],
            opened_at=row["opened_at"],
            closed_at=row["closed_at"],
            realized_pnl=row["realized_pnl"],
            exit_reason=row["exit_reason"],
            outcome=row["outcome"],
            trade_data=json.loads(row["trade_data"]),
            created_at=row["created_at"],
        )

    def _row_to_stored_signal(self, row: sqlite3.Row) -> StoredSignal:
        return StoredSignal(
            id=row["id"],
            timestamp=row["timestamp"],
            action=row["action"],
            confidence=row["confidence"],
            quality=row["quality"],
            signal_data=json.loads(row["signal_data"]),
            created_at=row["created_at"],
        )
