from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .anchor_types import CameraIntrinsics, CameraPose
from .calib import load_intrinsics
from .capture import BaseCapture, SyntheticCapture, USBOpenCVCapture
from .config import StreamConfig
from .display import LoggingDisplay, LoggingStatusView, MarkerDisplay, StatusView
from .events import Signal
from .geometry import PlaneSurface, SurfaceQuery
from .logging_utils import add_file_handler, child_logger, setup_logger
from .orchestrator import DetectionOrchestrator
from .output import CsvOutput, OutputSink
from .scheduler import Dispatcher
from .storage import SessionStorage
from .transport.base import FrameChannel
from .transport.http_channel import RequestChannel
from .transport.stream_channel import StreamChannel


@dataclass
class SessionSummary:
    session_path: str
    frames_processed: int
    frames_sent: int
    instructions: int
    errors: int
    markers: int
    log_path: str
    avg_fps: float


def build_surface(config: StreamConfig) -> Optional[SurfaceQuery]:
    surf = config.surface
    if surf is None or surf.type == "none":
        return None
    if surf.type == "plane":
        return PlaneSurface(surf.point, surf.normal)
    raise ValueError(f"unknown surface type: {surf.type!r}")


def build_intrinsics(config: StreamConfig) -> CameraIntrinsics:
    if config.calibration_path:
        return load_intrinsics(config.calibration_path)
    return CameraIntrinsics.from_resolution(config.width, config.height, config.focal_length)


class DetectionWorker:
    """
    Owner-thread loop: pulls frames, ticks the orchestrator and drains the
    dispatcher so background results land on this thread.
    """

    def __init__(
        self,
        config: StreamConfig,
        logger=None,
        capture: Optional[BaseCapture] = None,
        transport: Optional[FrameChannel] = None,
        display: Optional[MarkerDisplay] = None,
        status: Optional[StatusView] = None,
        surface: Optional[SurfaceQuery] = None,
        outputs: Optional[list[OutputSink]] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.config = config
        self.logger = logger or setup_logger(config.camera_name)
        self.dispatcher = dispatcher or Dispatcher(logger=child_logger(self.logger, "dispatch"))
        self.capture = capture
        self.transport = transport
        self.display = display or LoggingDisplay(child_logger(self.logger, "display"))
        self.status = status or LoggingStatusView(child_logger(self.logger, "status"))
        self.surface = surface if surface is not None else build_surface(config)
        if outputs is None:
            outputs = [CsvOutput()] if config.save_anchors else []
        self.outputs = outputs
        self.recenter_signal = Signal("recenter")
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def recenter(self) -> None:
        """Thread-safe request to drop every marker."""
        self.dispatcher.post(self.recenter_signal.emit)

    def _build_capture(self) -> BaseCapture:
        if self.capture is not None:
            return self.capture
        pose = CameraPose(tuple(self.config.camera_position), tuple(self.config.camera_rotation))
        if self.config.dry_run:
            return SyntheticCapture(self.config.fps, self.config.width, self.config.height, pose)
        return USBOpenCVCapture(
            self.config.device,
            self.config.fps,
            self.config.width,
            self.config.height,
            pose,
        )

    def _build_transport(self) -> FrameChannel:
        if self.transport is not None:
            return self.transport
        log = child_logger(self.logger, "transport")
        if self.config.transport == "websocket":
            return StreamChannel(
                self.config.stream_url,
                self.dispatcher,
                auto_reconnect=self.config.auto_reconnect,
                reconnect_delay=self.config.reconnect_delay_sec,
                jpeg_quality=self.config.stream_jpeg_quality,
                logger=log,
            )
        return RequestChannel(
            self.config.server_url,
            self.dispatcher,
            timeout=self.config.request_timeout_sec,
            jpeg_quality=self.config.jpeg_quality,
            logger=log,
        )

    def run(self) -> SessionSummary:
        storage = SessionStorage(self.config.session_root, name=f"{self.config.camera_name}_session")
        session_path = storage.begin()
        storage.write_manifest(self.config.as_dict())

        log_file = str(Path(storage.logs_dir) / "session.log")
        file_handler = add_file_handler(self.logger, self.config.camera_name, log_file)

        for out in self.outputs:
            out.open(Path(storage.session_dir))

        cap = self._build_capture()
        transport = self._build_transport()
        if self.surface is None:
            self.logger.warning("no surface query configured; instructions will not place markers")

        orchestrator = DetectionOrchestrator(
            transport,
            self.display,
            build_intrinsics(self.config),
            self.surface,
            self.dispatcher,
            status=self.status,
            outputs=self.outputs,
            send_interval=self.config.send_interval_sec,
            max_raycast_distance=self.config.max_raycast_distance,
            default_placement_distance=self.config.default_placement_distance,
            show_rays=self.config.show_rays,
            ray_duration=self.config.ray_duration_sec,
            send_camera_frames=self.config.send_camera_frames,
            recenter_signal=self.recenter_signal,
            logger=child_logger(self.logger, "orchestrator"),
        )

        self.logger.info("session started: %s", session_path)
        self.logger.info("config: %s", self.config.as_dict())

        orchestrator.attach()
        transport.open()
        cap.start()
        if not self.config.start_paused:
            orchestrator.set_paused(False)

        t0 = time.time()
        last = time.monotonic()
        frames = 0

        try:
            while True:
                if self._stop_event.is_set():
                    break
                if self.config.duration_sec and (time.time() - t0) >= self.config.duration_sec:
                    break
                if self.config.max_frames and frames >= self.config.max_frames:
                    break

                f = cap.next_frame()
                now = time.monotonic()
                dt, last = now - last, now

                orchestrator.update(dt, f)
                self.dispatcher.run_pending()
                if f is not None:
                    frames += 1

        finally:
            try:
                cap.stop()
            except Exception as e:
                self.logger.warning("capture stop failed: %s", e)

            transport.close()
            # let in-flight completions land before tearing down
            self.dispatcher.run_pending()
            markers = len(orchestrator.markers)
            orchestrator.detach()

            for out in self.outputs:
                try:
                    out.close()
                except Exception as e:
                    self.logger.warning("output close failed: %s", e)

        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d sent=%d instructions=%d errors=%d avg_fps=%.2f",
            frames, orchestrator.frames_sent, orchestrator.instructions, orchestrator.errors, avg,
        )
        self.logger.removeHandler(file_handler)
        file_handler.close()

        return SessionSummary(
            str(session_path),
            frames,
            orchestrator.frames_sent,
            orchestrator.instructions,
            orchestrator.errors,
            markers,
            log_file,
            avg,
        )
