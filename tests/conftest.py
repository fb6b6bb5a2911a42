import numpy as np
import pytest

from anchor_stream.display import MarkerDisplay, StatusView
from anchor_stream.geometry import SurfaceHit, SurfaceQuery
from anchor_stream.scheduler import Dispatcher
from anchor_stream.transport.base import FrameChannel


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> None:
        self.now += dt


class RecordingDisplay(MarkerDisplay):
    def __init__(self):
        """Track live markers and every show/remove call."""
        self.next_handle = 0
        self.live = {}
        self.shown = []
        self.removed = []
        self.rays = set()

    def show_marker(self, label, position):
        self.next_handle += 1
        self.live[self.next_handle] = (label, np.asarray(position))
        self.shown.append((label, np.asarray(position)))
        return self.next_handle

    def remove_marker(self, handle):
        self.removed.append(handle)
        self.live.pop(handle, None)

    def show_ray(self, placement):
        self.next_handle += 1
        self.rays.add(self.next_handle)
        return self.next_handle

    def remove_ray(self, handle):
        self.rays.discard(handle)

    def live_labels(self):
        return sorted(label for label, _ in self.live.values())


class RecordingStatus(StatusView):
    def __init__(self):
        self.texts = []

    def set_status(self, text):
        self.texts.append(text)

    @property
    def last(self):
        return self.texts[-1] if self.texts else None


class NoHitSurface(SurfaceQuery):
    def raycast(self, ray, max_distance):
        return None


class FixedHitSurface(SurfaceQuery):
    def __init__(self, point):
        """Always report a hit at ``point``."""
        self.point = np.asarray(point, dtype=float)
        self.calls = []

    def raycast(self, ray, max_distance):
        self.calls.append((ray, max_distance))
        return SurfaceHit(self.point)


class DummyChannel(FrameChannel):
    def __init__(self):
        """Transport double that records frames and can be marked busy."""
        super().__init__()
        self.busy = False
        self.sent = []

    @property
    def is_busy(self):
        return self.busy

    def send_frame(self, image, pose):
        self.sent.append((image, pose))
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher(clock):
    return Dispatcher(clock=clock)


@pytest.fixture
def display():
    return RecordingDisplay()


@pytest.fixture
def status():
    return RecordingStatus()


@pytest.fixture
def channel():
    return DummyChannel()
