"""Configuration for event delivery sinks."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class DeliveryMethod(Enum):
    """Supported event delivery methods."""
    FILE_OUTPUT = "file_output"
    STDOUT = "stdout"


class Partition(str, Enum):
    """How a file sink splits its journal."""
    EVENT_TYPE = "event_type"
    SESSION_DATE = "session_date"


@dataclass(frozen=True)
class FileDeliveryConfig:
    """Configuration for file-based delivery."""
    output_path: str
    partition_by: Optional[Partition] = None
    append_mode: bool = True
    create_dirs: bool = True


@dataclass(frozen=True)
class StdoutDeliveryConfig:
    """Configuration for stdout delivery."""
    format: str = "json"  # json, pretty
    include_timestamp: bool = True


@dataclass(frozen=True)
class DeliveryDestination:
    """Single event delivery destination."""
    name: str
    method: DeliveryMethod
    config: Any  # FileDeliveryConfig | StdoutDeliveryConfig
    enabled: bool = True

    # Only deliver these event types; None delivers everything
    event_types: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class EventDeliveryConfig:
    """Complete event delivery configuration."""
    destinations: tuple[DeliveryDestination, ...]
    enabled: bool = True


def get_default_delivery_config() -> EventDeliveryConfig:
    """Trade lifecycle events to stdout."""
    return EventDeliveryConfig(
        destinations=(
            DeliveryDestination(
                name="stdout",
                method=DeliveryMethod.STDOUT,
                config=StdoutDeliveryConfig(format="json", include_timestamp=True),
                event_types=(
                    "signal_generated",
                    "position_opened",
                    "position_closed",
                    "emergency_stop",
                    "session_reset",
                ),
            ),
        ),
    )


def create_file_destination(
    name: str,
    output_path: str,
    partition_by: Optional[str] = None,
    enabled: bool = True,
    event_types: Optional[tuple[str, ...]] = None,
    **kwargs
) -> DeliveryDestination:
    """Create file delivery destination; raises ValueError for an unknown partition."""
    return DeliveryDestination(
        name=name,
        method=DeliveryMethod.FILE_OUTPUT,
        config=FileDeliveryConfig(
            output_path=output_path,
            partition_by=Partition(partition_by) if partition_by is not None else None,
            **kwargs
        ),
        enabled=enabled,
        event_types=event_types,
    )


def create_stdout_destination(
    name: str = "stdout",
    format: str = "json",
    enabled: bool = True,
    event_types: Optional[tuple[str, ...]] = None,
) -> DeliveryDestination:
    """Create stdout delivery destination."""
    return DeliveryDestination(
        name=name,
        method=DeliveryMethod.STDOUT,
        config=StdoutDeliveryConfig(format=format),
        enabled=enabled,
        event_types=event_types,
    )
