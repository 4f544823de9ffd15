from collections import defaultdict
import logging
from typing import Callable, DefaultDict, Iterable, List, Type


Handler = Callable[[object], None]


class EventBus:
    """Synchronous in-process dispatch of blight domain events.

    Handlers run in priority order (lower first, then subscription order).
    A failing handler is logged and skipped; the state change that produced
    the event stays committed.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[Type[object], List[tuple[int, int, Handler]]] = defaultdict(list)
        self._next_order = 0
        self._last_publish_errors: List[Exception] = []
        self._logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[object], handler: Handler, *, priority: int = 100) -> None:
        self._subscribers[event_type].append((int(priority), self._next_order, handler))
        self._next_order += 1
        self._subscribers[event_type].sort(key=lambda row: (row[0], row[1]))

    def handler_count(self, event_type: Type[object]) -> int:
        return len(self._subscribers.get(event_type, ()))

    def publish(self, event: object) -> List[Exception]:
        self._last_publish_errors = []
        event_type = type(event)
        for priority, _, handler in list(self._subscribers.get(event_type, ())):
            try:
                handler(event)
            except Exception as exc:
                self._last_publish_errors.append(exc)
                handler_name = getattr(handler, "__qualname__", getattr(handler, "__name__", repr(handler)))
                self._logger.exception(
                    "Blight event handler failed and was isolated",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": handler_name,
                        "priority": priority,
                    },
                )
        return list(self._last_publish_errors)

    def publish_all(self, events: Iterable[object]) -> List[Exception]:
        errors: List[Exception] = []
        for event in events:
            errors.extend(self.publish(event))
        self._last_publish_errors = list(errors)
        return errors

    def last_publish_errors(self) -> List[Exception]:
        return list(self._last_publish_errors)
