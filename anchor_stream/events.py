from __future__ import annotations

import logging
from typing import Any, Callable


logger = logging.getLogger(__name__)


class Signal:
    """Minimal observer list; handlers are called in registration order."""

    def __init__(self, name: str = "signal"):
        self.name = name
        self._handlers: list[Callable[..., Any]] = []

    def connect(self, handler: Callable[..., Any]) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def disconnect(self, handler: Callable[..., Any]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def __len__(self) -> int:
        return len(self._handlers)

    def emit(self, *args: Any) -> None:
        for handler in list(self._handlers):
            try:
                handler(*args)
            except Exception:
                logger.exception("%s handler %r failed", self.name, handler)
