from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

from ..anchor_types import CameraPose
from ..events import Signal


Spawn = Callable[[Callable[[], None]], None]


def spawn_thread(fn: Callable[[], None], name: str = "anchor-stream-io") -> None:
    threading.Thread(target=fn, name=name, daemon=True).start()


class FrameChannel(ABC):
    """
    Sends frames to the inference server and reports what comes back.

    ``instruction_received`` carries a raw instruction body and
    ``error_received`` a raw error body. Both fire on the owner thread.
    """

    def __init__(self) -> None:
        self.instruction_received = Signal("instruction_received")
        self.error_received = Signal("error_received")

    @property
    @abstractmethod
    def is_busy(self) -> bool: ...

    @abstractmethod
    def send_frame(self, image: Any, pose: CameraPose) -> bool:
        """Start a send; returns False when the frame was skipped."""

    def open(self) -> None:
        return None

    def close(self) -> None:
        return None
