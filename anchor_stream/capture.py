import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

import cv2
import numpy as np

from .anchor_types import CameraPose, CapturedFrame


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BaseCapture(ABC):
    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def next_frame(self) -> Optional[CapturedFrame]:
        """Newest frame, or None when nothing new arrived since the last call."""

    @abstractmethod
    def stop(self) -> None: ...


class USBOpenCVCapture(BaseCapture):
    """Webcam source. It has no tracking, so every frame carries a fixed pose."""

    def __init__(self, device: int | str, fps: int, width: int, height: int, pose: Optional[CameraPose] = None):
        self.device = device
        self.fps = fps
        self.width = width
        self.height = height
        self.pose = pose or CameraPose.identity()
        self.cap: Any = None
        self.idx = 0

    def start(self) -> None:
        if isinstance(self.device, int):
            self.cap = cv2.VideoCapture(self.device)
        else:
            dev_str = str(self.device)
            match = re.match(r"^/dev/video(\d+)$", dev_str)
            if match:
                self.cap = cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2)
            else:
                self.cap = cv2.VideoCapture(dev_str)

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)

        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {self.device}")

    def next_frame(self) -> Optional[CapturedFrame]:
        ok, img = self.cap.read()
        if not ok:
            return None
        self.idx += 1
        return CapturedFrame(self.idx, _now_iso(), img, self.pose)

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


class SyntheticCapture(BaseCapture):
    def __init__(self, fps: int, width: int, height: int, pose: Optional[CameraPose] = None):
        self.fps = fps
        self.width = width
        self.height = height
        self.pose = pose or CameraPose.identity()
        self.idx = 0
        self._last = 0.0

    def start(self) -> None:
        self._last = time.time()

    def next_frame(self) -> Optional[CapturedFrame]:
        now = time.time()
        if self.fps > 0:
            wait = max(0.0, (1.0 / self.fps) - (now - self._last))
            if wait > 0:
                time.sleep(wait)
        self._last = time.time()
        self.idx += 1
        img = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        return CapturedFrame(self.idx, _now_iso(), img, self.pose)

    def stop(self) -> None:
        return None
