"""
Event delivery sinks.

Sinks subscribe to the EventBus and write serialized events to stdout or
to files.
"""

from typing import Optional

from ..config.delivery import (
    DeliveryDestination,
    DeliveryMethod,
    EventDeliveryConfig,
    get_default_delivery_config,
)
from ..events import EventBus
from .base import BaseEventDelivery, DeliveryResult, DeliveryStatus
from .file_delivery import FileEventDelivery
from .stdout_delivery import StdoutEventDelivery


def create_delivery(destination: DeliveryDestination) -> BaseEventDelivery:
    """Build the sink for one configured destination."""
    if destination.method == DeliveryMethod.STDOUT:
        return StdoutEventDelivery(destination.name, destination.config, event_types=destination.event_types)
    if destination.method == DeliveryMethod.FILE_OUTPUT:
        return FileEventDelivery(destination.name, destination.config, event_types=destination.event_types)
    raise ValueError(f"Unsupported delivery method: {destination.method}")


def attach_sinks(bus: EventBus, config: Optional[EventDeliveryConfig] = None) -> list[BaseEventDelivery]:
    """Create every enabled sink and subscribe it to ``bus``."""
    config = config or get_default_delivery_config()
    if not config.enabled:
        return []

    sinks = []
    for destination in config.destinations:
        if not destination.enabled:
            continue
        sink = create_delivery(destination)
        sink.attach(bus)
        sinks.append(sink)
    return sinks


__all__ = [
    "BaseEventDelivery",
    "DeliveryResult",
    "DeliveryStatus",
    "FileEventDelivery",
    "StdoutEventDelivery",
    "attach_sinks",
    "create_delivery",
]
