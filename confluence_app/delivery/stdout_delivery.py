"""Standard output event delivery."""

import json
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from ..config.delivery import StdoutDeliveryConfig
from .base import BaseEventDelivery, DeliveryResult, DeliveryStatus


class StdoutEventDelivery(BaseEventDelivery):
    """Prints events to stdout as JSON or a one-line summary."""

    def __init__(
        self,
        name: str = "stdout",
        config: Optional[StdoutDeliveryConfig] = None,
        **kwargs
    ):
        super().__init__(name, config or StdoutDeliveryConfig(), **kwargs)
        self.config: StdoutDeliveryConfig

    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        results = []

        for event in events:
            try:
                output = self._format_event(event)
                print(output, file=sys.stdout, flush=True)

                self.logger.debug(
                    "Event printed to stdout",
                    delivery_name=self.name,
                    event_type=event.get("event_type")
                )

                results.append(DeliveryResult(
                    status=DeliveryStatus.SUCCESS,
                    message="Printed to stdout"
                ))

            except Exception as e:
                self.logger.error(
                    "Failed to print event to stdout",
                    delivery_name=self.name,
                    event_type=event.get("event_type"),
                    error=str(e)
                )
                results.append(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=f"Stdout error: {str(e)}",
                    error=e
                ))

        return results

    def _format_event(self, event: dict[str, Any]) -> str:
        if self.config.format == "pretty":
            output = f"[{event.get('timestamp')}] {event.get('event_type', 'event').upper()}"
            details = {k: v for k, v in event.items() if k not in ("event_type", "timestamp")}
            if "reason" in details:
                output += f": {details['reason']}"
            elif "position_id" in details:
                output += f": {details['position_id']}"
            return output

        if self.config.include_timestamp:
            event_copy = event.copy()
            event_copy["stdout_timestamp"] = datetime.now(timezone.utc).isoformat()
            return json.dumps(event_copy, default=str)
        return json.dumps(event, default=str)

    def health_check(self) -> bool:
        try:
            return sys.stdout.writable()
        except Exception:
            return False
