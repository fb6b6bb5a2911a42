from __future__ import annotations

import logging
from typing import Optional, Sequence

from .anchor_types import CameraIntrinsics, CameraPose, CapturedFrame, Instruction, Marker
from .display import MarkerDisplay, NullStatusView, StatusView
from .events import Signal
from .geometry import (
    DEFAULT_MAX_RAYCAST_DISTANCE,
    DEFAULT_PLACEMENT_DISTANCE,
    Placement,
    SurfaceQuery,
    resolve_placement,
)
from .output import OutputSink
from .protocol import ProtocolError, parse_error, parse_instruction
from .reconcile import ReconcileResult, apply_result, reconcile
from .scheduler import Dispatcher
from .transport.base import FrameChannel


class DetectionOrchestrator:
    """
    Owner-thread coordinator: rate-limits frame sends, turns server
    instructions into marker placements and keeps the displayed set in sync.
    """

    def __init__(
        self,
        transport: FrameChannel,
        display: MarkerDisplay,
        intrinsics: CameraIntrinsics,
        surface: Optional[SurfaceQuery],
        dispatcher: Dispatcher,
        status: Optional[StatusView] = None,
        outputs: Optional[Sequence[OutputSink]] = None,
        send_interval: float = 1.0,
        max_raycast_distance: float = DEFAULT_MAX_RAYCAST_DISTANCE,
        default_placement_distance: float = DEFAULT_PLACEMENT_DISTANCE,
        show_rays: bool = False,
        ray_duration: float = 2.0,
        send_camera_frames: bool = True,
        recenter_signal: Optional[Signal] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.transport = transport
        self.display = display
        self.intrinsics = intrinsics
        self.surface = surface
        self.dispatcher = dispatcher
        self.status = status or NullStatusView()
        self.outputs = list(outputs or [])
        self.send_interval = float(send_interval)
        self.max_raycast_distance = float(max_raycast_distance)
        self.default_placement_distance = float(default_placement_distance)
        self.show_rays = show_rays
        self.ray_duration = float(ray_duration)
        self.send_camera_frames = send_camera_frames
        self.recenter_signal = recenter_signal
        self.log = logger or logging.getLogger(__name__)

        self.markers: dict[str, Marker] = {}
        self._rays: list = []
        self._paused = True
        self._since_last_send = 0.0
        self._last_sent_pose: Optional[CameraPose] = None
        self._attached = False

        self.frames_sent = 0
        self.instructions = 0
        self.errors = 0

    @property
    def is_paused(self) -> bool:
        return self._paused

    # -- lifecycle --

    def attach(self) -> None:
        if self._attached:
            return
        self.transport.instruction_received.connect(self.handle_instruction)
        self.transport.error_received.connect(self.handle_error)
        if self.recenter_signal is not None:
            self.recenter_signal.connect(self.recenter)
        self._attached = True
        self.status.set_status("AR detection ready.\nWaiting for instructions...")

    def detach(self) -> None:
        if not self._attached:
            return
        self.transport.instruction_received.disconnect(self.handle_instruction)
        self.transport.error_received.disconnect(self.handle_error)
        if self.recenter_signal is not None:
            self.recenter_signal.disconnect(self.recenter)
        self._attached = False
        self._clear_markers()
        self._clear_rays()

    def set_paused(self, pause: bool) -> None:
        self._paused = pause
        if pause:
            self.status.set_status("Detection paused.\nPress play to resume.")
            self.log.info("paused")
        else:
            self.status.set_status("Detection active.\nWaiting for instructions...")
            self.log.info("resumed")

    # -- send cadence --

    def update(self, dt: float, frame: Optional[CapturedFrame]) -> bool:
        """Called once per owner-loop tick; returns True when a frame was sent."""
        if self._paused:
            return False
        if not self.send_camera_frames:
            self.log.debug("not sending: frame sending disabled")
            return False
        if frame is None:
            self.log.debug("not sending: no new frame")
            return False

        self._since_last_send += dt
        if self._since_last_send < self.send_interval:
            return False
        self._since_last_send = 0.0

        if self.transport.is_busy:
            self.log.debug("not sending: transport busy")
            return False

        self.log.debug("sending frame #%d (%dx%d)", frame.idx, frame.width, frame.height)
        if not self.transport.send_frame(frame.image, frame.pose):
            return False
        self._last_sent_pose = frame.pose
        self.frames_sent += 1
        return True

    # -- responses --

    def handle_instruction(self, body) -> None:
        if self._paused:
            self.log.debug("paused, discarding instruction")
            return
        try:
            instruction = parse_instruction(body)
        except ProtocolError as e:
            self.errors += 1
            self.log.error("failed to parse instruction: %s", e)
            self.status.set_status(f"Invalid instruction: {e}")
            return

        self.instructions += 1
        self.log.info(
            "instruction status=%s objects=%s", instruction.status, instruction.labels
        )
        self.apply_instruction(instruction)
        self.status.set_status(self._status_text(instruction))

    def handle_error(self, body) -> None:
        if self._paused:
            self.log.debug("paused, discarding error: %s", body)
            return
        self.errors += 1
        self.log.warning("error received: %s", body)
        try:
            message = parse_error(body)
        except ProtocolError as e:
            self.log.error("failed to parse error body: %s", e)
            raw = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else str(body)
            self.status.set_status(f"HTTP Error (raw): {raw[:100]}")
            return
        self.status.set_status(f"Error: {message}")

    def apply_instruction(self, instruction: Instruction) -> Optional[ReconcileResult]:
        if self.show_rays:
            self._clear_rays()

        if self.surface is None:
            self.log.error("no surface query configured, cannot place markers")
            return None

        pose = self._last_sent_pose or CameraPose.identity()

        def place(u: float, v: float) -> Placement:
            return resolve_placement(
                u,
                v,
                self.intrinsics,
                pose,
                self.surface,
                self.max_raycast_distance,
                self.default_placement_distance,
            )

        result = reconcile(self.markers, instruction, place)
        for marker in result.to_remove:
            self.log.info("removing marker '%s'", marker.label)
        self.markers = apply_result(self.markers, result, self.display)

        for label, placement in result.to_create_or_update:
            for out in self.outputs:
                out.write_placement(label, placement)
            if self.show_rays:
                self._show_ray(placement)

        return result

    def recenter(self) -> None:
        self.log.info("recenter: clearing %d markers", len(self.markers))
        self._clear_markers()
        self._clear_rays()
        self.status.set_status("Tracking recentered. Waiting for new instructions...")

    # -- helpers --

    def _status_text(self, instruction: Instruction) -> str:
        text = f"Status: {instruction.status}"
        if instruction.message:
            text += f"\nMsg: {instruction.message}"
        labels = instruction.labels
        text += f"\nObjects: {', '.join(labels)}" if labels else "\nNo objects in instruction"
        return text

    def _clear_markers(self) -> None:
        for marker in self.markers.values():
            self.display.remove_marker(marker.handle)
        self.markers = {}

    def _show_ray(self, placement: Placement) -> None:
        handle = self.display.show_ray(placement)
        if handle is None:
            return
        self._rays.append(handle)
        self.dispatcher.call_later(self.ray_duration, self._expire_ray, handle)

    def _expire_ray(self, handle) -> None:
        if handle in self._rays:
            self._rays.remove(handle)
            self.display.remove_ray(handle)

    def _clear_rays(self) -> None:
        for handle in self._rays:
            self.display.remove_ray(handle)
        self._rays = []
