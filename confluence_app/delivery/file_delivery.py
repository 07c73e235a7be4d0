"""JSON-lines event journal."""

import fcntl
import json
from collections import defaultdict
from pathlib import Path
from typing import Any

from ..config.delivery import FileDeliveryConfig, Partition
from .base import BaseEventDelivery, DeliveryResult, DeliveryStatus


class FileEventDelivery(BaseEventDelivery):
    """
    Appends events to JSON-lines files.

    With ``partition_by`` set, each event goes to a sibling file keyed by its
    event type (``events.position_closed.jsonl``) or by the session date of
    its timestamp (``events.2024-03-15.jsonl``). The date comes from the
    event's own exchange-local timestamp, so a replayed backtest writes the
    same files as the live session did.
    """

    def __init__(self, name: str, config: FileDeliveryConfig, **kwargs):
        super().__init__(name, config, **kwargs)
        self.config: FileDeliveryConfig = config
        self.output_path = Path(config.output_path)
        # Files already started by this sink; later writes always append
        self._started: set[Path] = set()

        if config.create_dirs:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)

    def path_for(self, event: dict[str, Any]) -> Path:
        partition = self.config.partition_by
        if partition is None:
            return self.output_path

        if partition == Partition.EVENT_TYPE:
            key = event.get("event_type") or "event"
        else:
            timestamp = event.get("timestamp")
            key = timestamp[:10] if timestamp else "undated"

        return self.output_path.with_name(f"{self.output_path.stem}.{key}{self.output_path.suffix}")

    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        by_path: dict[Path, list[dict[str, Any]]] = defaultdict(list)
        for event in events:
            by_path[self.path_for(event)].append(event)

        results = []
        for path, batch in by_path.items():
            try:
                self._append(path, batch)
            except OSError as e:
                self.logger.warning(
                    "Event journal write failed",
                    delivery_name=self.name,
                    output_path=str(path),
                    error=str(e)
                )
                results.extend(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=f"File system error: {str(e)}",
                    error=e
                ) for _ in batch)
                continue
            except (TypeError, ValueError) as e:
                self.logger.error(
                    "Event encoding failed",
                    delivery_name=self.name,
                    error=str(e)
                )
                results.extend(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=f"JSON encoding error: {str(e)}",
                    error=e
                ) for _ in batch)
                continue

            self.logger.debug(
                "Events journaled",
                delivery_name=self.name,
                output_path=str(path),
                count=len(batch),
            )
            results.extend(DeliveryResult(
                status=DeliveryStatus.SUCCESS,
                message=f"Written to {path}"
            ) for _ in batch)

        return results

    def _append(self, path: Path, events: list[dict[str, Any]]) -> None:
        lines = "".join(json.dumps(event, default=str) + "\n" for event in events)
        mode = 'a' if self.config.append_mode or path in self._started else 'w'

        with open(path, mode) as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            f.write(lines)
        self._started.add(path)

    def health_check(self) -> bool:
        """Check if the output directory is writable."""
        try:
            test_file = self.output_path.parent / ".health_check_test"
            test_file.write_text("test")
            test_file.unlink()
            return True

        except OSError as e:
            self.logger.warning(
                "Health check failed",
                delivery_name=self.name,
                error=str(e)
            )
            return False
