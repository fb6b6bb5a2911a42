from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from .geometry import Placement


class MarkerDisplay(ABC):
    @abstractmethod
    def show_marker(self, label: str, position) -> Any: ...

    @abstractmethod
    def remove_marker(self, handle: Any) -> None: ...

    def show_ray(self, placement: Placement) -> Any:
        return None

    def remove_ray(self, handle: Any) -> None:
        return None


class StatusView(ABC):
    @abstractmethod
    def set_status(self, text: str) -> None: ...


class LoggingDisplay(MarkerDisplay):
    """Stands in for a renderer: every call is logged and given an id."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)
        self._ids = itertools.count(1)
        self.markers: dict[int, tuple[str, Any]] = {}
        self.rays: set[int] = set()

    def show_marker(self, label: str, position) -> int:
        handle = next(self._ids)
        self.markers[handle] = (label, position)
        x, y, z = (float(c) for c in position)
        self.log.info("marker+ #%d '%s' at (%.3f, %.3f, %.3f)", handle, label, x, y, z)
        return handle

    def remove_marker(self, handle: Any) -> None:
        label, _ = self.markers.pop(handle, ("?", None))
        self.log.info("marker- #%s '%s'", handle, label)

    def show_ray(self, placement: Placement) -> int:
        handle = next(self._ids)
        self.rays.add(handle)
        self.log.debug(
            "ray #%d hit=%s distance=%.3f", handle, placement.hit, placement.distance
        )
        return handle

    def remove_ray(self, handle: Any) -> None:
        self.rays.discard(handle)


class LoggingStatusView(StatusView):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or logging.getLogger(__name__)
        self.text = ""

    def set_status(self, text: str) -> None:
        self.text = text
        self.log.info("status: %s", text.replace("\n", " | "))


class NullStatusView(StatusView):
    def set_status(self, text: str) -> None:
        return None
