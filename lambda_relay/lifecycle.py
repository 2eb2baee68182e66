"""lifecycle.py — Fire-and-forget lifecycle signals.

The dispatcher emits ``relay.ended`` after every handled invocation so the
surrounding platform can flush tracing or metrics. Listener failures are
logged and never reach the invocation.
"""
from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[str], Any]


class LifecycleEmitter:
    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event_name: str, listener: Listener) -> None:
        self._listeners[event_name].append(listener)

    def off(self, event_name: str, listener: Listener) -> None:
        if listener in self._listeners.get(event_name, []):
            self._listeners[event_name].remove(listener)

    async def emit(self, event_name: str) -> None:
        for listener in list(self._listeners.get(event_name, [])):
            try:
                result = listener(event_name)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("[WARNING] Lifecycle listener for %s failed: %s", event_name, exc)


events = LifecycleEmitter()
