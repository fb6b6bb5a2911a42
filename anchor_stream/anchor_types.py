from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class CameraIntrinsics:
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    @classmethod
    def from_resolution(cls, width: int, height: int, focal_length: Optional[float] = None) -> "CameraIntrinsics":
        """Centered principal point; focal length defaults to the image width."""
        f = float(focal_length) if focal_length else float(width)
        return cls(f, f, width / 2.0, height / 2.0, int(width), int(height))


@dataclass(frozen=True)
class CameraPose:
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)  # x, y, z, w

    @classmethod
    def identity(cls) -> "CameraPose":
        return cls()


@dataclass
class Detection:
    label: str
    u: Optional[float] = None
    v: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return self.u is not None and self.v is not None


@dataclass
class Instruction:
    status: str
    message: Optional[str] = None
    detections: Optional[list[Detection]] = field(default_factory=list)

    @property
    def labels(self) -> list[str]:
        return [d.label for d in self.detections or []]


@dataclass
class Marker:
    label: str
    position: Any  # (3,) ndarray
    handle: Any = None  # owned by the display


@dataclass
class CapturedFrame:
    idx: int
    ts_iso: str
    image: Any  # numpy array, HxWx3 BGR
    pose: CameraPose = field(default_factory=CameraPose)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass
class DetectionReport:
    class_name: str
    confidence: float
    world_position: tuple[float, float, float]


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
