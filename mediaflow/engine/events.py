#!/usr/bin/env python3
"""
Change notification for graph and scheduler state.

Listeners are plain callables receiving one event dict
``{"type": ..., "timestamp": ..., **payload}``. A failing listener is logged
and never breaks the emitter or the other listeners.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class Observable:
    """Owner of state that publishes its changes to subscribers"""

    def __init__(self):
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        with self._listeners_lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event_type: str, **payload: Any):
        event: Dict[str, Any] = {"type": event_type, "timestamp": time.time()}
        event.update(payload)

        with self._listeners_lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed while handling %s event", event_type)
