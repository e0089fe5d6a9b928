from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

LEDGER_ENTRY_POSTED = "ledger.entry.posted"
LEDGER_ENTRY_VOIDED = "ledger.entry.voided"
LEDGER_PERIOD_CLOSED = "ledger.period.closed"
LEDGER_PERIOD_REOPENED = "ledger.period.reopened"


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out; handlers run inline in publish order."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in list(self._subscribers.get(event_name, [])):
            handler(event)


event_bus = InProcessEventBus()
