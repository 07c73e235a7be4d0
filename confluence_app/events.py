"""
Structured events emitted by the decision core.

The pipeline, lifecycle machine and governor publish typed events on an
EventBus instead of writing presentation output. Delivery sinks, the trade
store and tests subscribe as plain callables.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, ClassVar, Optional

import structlog

from .signals.models import ConfluenceZone, GateName, StrategySignal
from .state.models import ClosedTrade, Position

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Event:
    """Base event; ``event_type`` is the stable name used by sinks."""
    event_type: ClassVar[str] = "event"

    timestamp: datetime

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        data = {"event_type": self.event_type, "timestamp": self.timestamp.isoformat()}
        data.update(self.payload())
        return data


@dataclass(frozen=True)
class GateEvaluated(Event):
    event_type: ClassVar[str] = "gate_evaluated"

    gate: GateName = GateName.MARKET_CONDITION
    accepted: bool = False
    reason: str = ""

    def payload(self) -> dict[str, Any]:
        return {"gate": self.gate.value, "accepted": self.accepted, "reason": self.reason}


@dataclass(frozen=True)
class ZoneFormed(Event):
    event_type: ClassVar[str] = "zone_formed"

    zone: Optional[ConfluenceZone] = None

    def payload(self) -> dict[str, Any]:
        return {"zone": self.zone.to_dict() if self.zone else None}


@dataclass(frozen=True)
class SignalGenerated(Event):
    event_type: ClassVar[str] = "signal_generated"

    signal: Optional[StrategySignal] = None

    def payload(self) -> dict[str, Any]:
        return {"signal": self.signal.to_dict() if self.signal else None}


@dataclass(frozen=True)
class EntryRejected(Event):
    event_type: ClassVar[str] = "entry_rejected"

    stage: str = ""
    reason: str = ""

    def payload(self) -> dict[str, Any]:
        return {"stage": self.stage, "reason": self.reason}


@dataclass(frozen=True)
class PositionOpened(Event):
    event_type: ClassVar[str] = "position_opened"

    position_id: str = ""
    symbol: str = ""
    side: str = ""
    entry_price: float = 0.0
    quantity: float = 0.0
    stop_loss: float = 0.0
    risk: float = 0.0

    @classmethod
    def from_position(cls, position: Position) -> "PositionOpened":
        return cls(
            timestamp=position.opened_at,
            position_id=position.position_id,
            symbol=position.symbol,
            side=position.side.value,
            entry_price=position.entry_price,
            quantity=position.quantity,
            stop_loss=position.stop_loss,
            risk=position.risk,
        )

    def payload(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "symbol": self.symbol,
            "side": self.side,
            "entry_price": self.entry_price,
            "quantity": self.quantity,
            "stop_loss": self.stop_loss,
            "risk": self.risk,
        }


@dataclass(frozen=True)
class PositionClosed(Event):
    event_type: ClassVar[str] = "position_closed"

    trade: Optional[ClosedTrade] = None

    def payload(self) -> dict[str, Any]:
        return {"trade": self.trade.to_dict() if self.trade else None}


@dataclass(frozen=True)
class EmergencyStopTriggered(Event):
    event_type: ClassVar[str] = "emergency_stop"

    drawdown: float = 0.0
    positions_closed: int = 0
    entries_cancelled: int = 0

    def payload(self) -> dict[str, Any]:
        return {
            "drawdown": self.drawdown,
            "positions_closed": self.positions_closed,
            "entries_cancelled": self.entries_cancelled,
        }


@dataclass(frozen=True)
class SessionReset(Event):
    event_type: ClassVar[str] = "session_reset"

    session_date: Optional[date] = None
    opening_equity: float = 0.0

    def payload(self) -> dict[str, Any]:
        return {
            "session_date": self.session_date.isoformat() if self.session_date else None,
            "opening_equity": self.opening_equity,
        }


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe hub; handler failures never reach the tick."""

    def __init__(self) -> None:
        self.logger = logger
        self._handlers: dict[Optional[str], list[EventHandler]] = defaultdict(list)

    def subscribe(self, handler: EventHandler, event_type: Optional[str] = None) -> None:
        """Register a handler for one event type, or for all events when None."""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, handler: EventHandler, event_type: Optional[str] = None) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Event) -> None:
        handlers = self._handlers.get(event.event_type, []) + self._handlers.get(None, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    error_type=type(e).__name__,
                )
