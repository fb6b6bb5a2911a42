"""Stream camera frames to an inference server and anchor its detections in 3D."""

from .config import StreamConfig
from .orchestrator import DetectionOrchestrator
from .worker import DetectionWorker

__all__ = ["StreamConfig", "DetectionOrchestrator", "DetectionWorker"]
