"""Base classes for event delivery sinks."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog

from ..events import Event, EventBus


class DeliveryStatus(Enum):
    """Event delivery status."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """Result of one event delivery."""
    status: DeliveryStatus
    message: Optional[str] = None
    delivery_time_ms: Optional[int] = None
    error: Optional[Exception] = None


class BaseEventDelivery(ABC):
    """
    Base class for event delivery sinks.

    A sink is an EventBus observer and runs inside the tick. Sinks write to
    local destinations only, so each event gets exactly one attempt: a
    failure is logged and counted, the event is dropped, and the tick moves
    on without waiting.
    """

    def __init__(
        self,
        name: str,
        config: Any,
        event_types: Optional[tuple[str, ...]] = None,
    ):
        self.name = name
        self.config = config
        self.event_types = event_types
        self.logger = structlog.get_logger(f"event.delivery.{name}")
        self._delivery_count = 0
        self._error_count = 0

    @abstractmethod
    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        """
        Deliver serialized events to the configured destination.

        Args:
            events: List of event dictionaries

        Returns:
            List of delivery results for each event
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check if delivery mechanism is healthy."""
        pass

    def accepts(self, event: Event) -> bool:
        return self.event_types is None or event.event_type in self.event_types

    def __call__(self, event: Event) -> None:
        if not self.accepts(event):
            return
        self.deliver_events([event.to_dict()])

    def attach(self, bus: EventBus) -> None:
        bus.subscribe(self)

    def deliver_events(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        """Deliver once and record the outcome; never raises."""
        start_time = time.monotonic()
        try:
            results = self.deliver(events)
        except Exception as e:
            self.logger.error(
                "Event delivery failed",
                delivery_name=self.name,
                event_types=[event.get("event_type") for event in events],
                error=str(e),
                error_type=type(e).__name__,
            )
            results = [DeliveryResult(
                status=DeliveryStatus.FAILED,
                message=f"Delivery error: {str(e)}",
                error=e,
            ) for _ in events]

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        for result in results:
            result.delivery_time_ms = elapsed_ms
            if result.status == DeliveryStatus.SUCCESS:
                self._delivery_count += 1
            else:
                self._error_count += 1

        return results

    def get_stats(self) -> dict[str, Any]:
        """Get delivery statistics."""
        return {
            "name": self.name,
            "delivery_count": self._delivery_count,
            "error_count": self._error_count,
            "success_rate": (
                self._delivery_count / (self._delivery_count + self._error_count)
                if (self._delivery_count + self._error_count) > 0 else 0.0
            )
        }

    def reset_stats(self):
        self._delivery_count = 0
        self._error_count = 0
