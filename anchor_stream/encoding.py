from __future__ import annotations

from typing import Optional

import cv2
import numpy as np


class EncodeError(RuntimeError):
    pass


class FrameEncoder:
    """
    JPEG encoder with a reusable staging buffer.

    ``stage`` copies the caller's frame into the buffer (owner thread), so the
    capture source is free to overwrite its own image while ``encode`` runs on
    a worker. The buffer is only reallocated when the frame shape changes.
    """

    def __init__(self, quality: int = 75):
        self.quality = int(quality)
        self._buffer: Optional[np.ndarray] = None
        self.allocations = 0

    @property
    def buffer(self) -> Optional[np.ndarray]:
        return self._buffer

    def stage(self, image: np.ndarray) -> np.ndarray:
        if image is None:
            raise EncodeError("no image to stage")
        image = np.asarray(image)
        if self._buffer is None or self._buffer.shape != image.shape or self._buffer.dtype != image.dtype:
            self._buffer = np.empty_like(image)
            self.allocations += 1
        np.copyto(self._buffer, image)
        return self._buffer

    def encode(self, image: Optional[np.ndarray] = None) -> bytes:
        src = self._buffer if image is None else image
        if src is None:
            raise EncodeError("nothing staged")
        ok, buf = cv2.imencode(".jpg", src, [int(cv2.IMWRITE_JPEG_QUALITY), self.quality])
        if not ok:
            raise EncodeError("JPEG encoding failed")
        return buf.tobytes()
