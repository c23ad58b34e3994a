"""Synchronous listener lists used for progress and lifecycle notifications."""

from typing import Any, Callable, Dict, List

from memory_engine.telemetry import get_logger

logger = get_logger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


class EventEmitter:
    """
    Calls registered listeners with ``(event_name, payload)`` at fixed checkpoints.

    A listener that raises is logged and skipped; it never interrupts the
    operation that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as e:
                logger.warning("listener_failed", event_name=event, error=str(e))
