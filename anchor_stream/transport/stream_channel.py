"""
Persistent WebSocket channel with auto-reconnect.

Lifecycle::

    connect() -> CONNECTING -> OPEN -> send_frame()/send_text() <-> message_received
                     \\              \\
                      +-- error/close --> DISCONNECTED --(reconnect_delay)--> connect()

The blocking connect and receive loop run on a background thread. Every
connection event is posted to the owner thread, which is the only place the
state machine and the send path are touched.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

from websockets.sync.client import connect as ws_connect

from ..anchor_types import CameraPose, ConnectionState, DetectionReport
from ..encoding import EncodeError, FrameEncoder
from ..events import Signal
from ..protocol import detections_json, metadata_json, text_message_json
from ..scheduler import Dispatcher, Timer
from .base import FrameChannel, Spawn, spawn_thread


Connector = Callable[[str], Any]


class StreamChannel(FrameChannel):
    def __init__(
        self,
        url: str,
        dispatcher: Dispatcher,
        auto_reconnect: bool = True,
        reconnect_delay: float = 3.0,
        jpeg_quality: int = 50,
        connector: Optional[Connector] = None,
        spawn: Optional[Spawn] = None,
        encode_executor: Optional[Executor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__()
        self.url = url
        self.dispatcher = dispatcher
        self.auto_reconnect = auto_reconnect
        self.reconnect_delay = float(reconnect_delay)
        self.encoder = FrameEncoder(jpeg_quality)
        self._connector = connector or ws_connect
        self._spawn = spawn or spawn_thread
        self._executor: Optional[Executor] = encode_executor
        self._owns_executor = encode_executor is None
        self.log = logger or logging.getLogger(__name__)

        self.message_received = self.instruction_received
        self.state_changed = Signal("state_changed")

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._generation = 0
        self._should_reconnect = False
        self._shutdown_requested = False
        self._reconnect_timer: Optional[Timer] = None
        self._encode_in_flight = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN and self._ws is not None

    @property
    def is_busy(self) -> bool:
        return self._encode_in_flight

    @property
    def should_reconnect(self) -> bool:
        return self._should_reconnect

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._state = state
            self.state_changed.emit(state)

    # -- connection lifecycle (owner thread) --

    def open(self) -> None:
        self.connect()

    def connect(self) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        self._should_reconnect = self.auto_reconnect
        self._shutdown_requested = False
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        self._generation += 1
        gen = self._generation
        self._set_state(ConnectionState.CONNECTING)
        self.log.info("connecting to %s (attempt gen=%d)", self.url, gen)
        self._spawn(lambda: self._run_connection(gen))

    def _run_connection(self, gen: int) -> None:
        # background thread: blocking connect, then receive until closed
        try:
            ws = self._connector(self.url)
        except Exception as e:
            self.dispatcher.post(self._on_error, gen, e)
            return

        self.dispatcher.post(self._on_open, gen, ws)
        try:
            for message in ws:
                self.dispatcher.post(self._on_message, gen, message)
        except Exception as e:
            self.dispatcher.post(self._on_error, gen, e)
            return
        self.dispatcher.post(self._on_close, gen, getattr(ws, "close_code", None))

    def _on_open(self, gen: int, ws: Any) -> None:
        if gen != self._generation or self._state is not ConnectionState.CONNECTING:
            self.log.debug("stale connection opened, closing it")
            self._spawn(ws.close)
            return
        if self._shutdown_requested:
            self.log.info("shutdown requested while connecting, closing")
            self._spawn(ws.close)
            self._enter_disconnected()
            return
        self._ws = ws
        self._set_state(ConnectionState.OPEN)
        self.log.info("connection opened: %s", self.url)

    def _on_error(self, gen: int, exc: BaseException) -> None:
        if gen != self._generation:
            return
        self.log.error("connection error (%s): %s", self._state.value, exc)
        self._enter_disconnected()

    def _on_close(self, gen: int, code: Optional[int]) -> None:
        if gen != self._generation:
            return
        self.log.info("connection closed, code=%s", code)
        self._enter_disconnected()

    def _enter_disconnected(self) -> None:
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)
        if not self._should_reconnect:
            return
        if self._reconnect_timer is not None and self._reconnect_timer.pending:
            return
        self.log.info("reconnecting in %.1fs", self.reconnect_delay)
        self._reconnect_timer = self.dispatcher.call_later(self.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        if not self._should_reconnect:
            return
        self.connect()

    def _on_message(self, gen: int, message: Any) -> None:
        if gen != self._generation:
            return
        if isinstance(message, (bytes, bytearray)):
            message = bytes(message).decode("utf-8", errors="replace")
        self.log.debug("message received: %s", message)
        self.message_received.emit(message)

    def shutdown(self) -> None:
        self._should_reconnect = False
        self._shutdown_requested = True
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        if self._state is ConnectionState.OPEN and self._ws is not None:
            self._set_state(ConnectionState.CLOSING)
            self._spawn(self._ws.close)

    def close(self) -> None:
        self.shutdown()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _encode_executor(self) -> Executor:
        # recreated after close() so the channel can be reopened
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="jpeg-encode")
        return self._executor

    # -- sending (owner thread) --

    def send_text(self, text: str) -> bool:
        if not self.is_connected:
            return False
        try:
            self._ws.send(text)
        except Exception as e:
            self.log.error("failed to send text: %s", e)
            return False
        return True

    def send_bytes(self, data: bytes) -> bool:
        if not self.is_connected:
            return False
        try:
            self._ws.send(data)
        except Exception as e:
            self.log.error("failed to send binary frame: %s", e)
            return False
        return True

    def send_message(self, message: str) -> bool:
        return self.send_text(text_message_json(message))

    def send_detections(self, reports: Iterable[DetectionReport]) -> bool:
        return self.send_text(detections_json(reports))

    def send_frame(self, image: Any, pose: CameraPose) -> bool:
        if not self.is_connected or image is None or self._encode_in_flight:
            return False

        try:
            staged = self.encoder.stage(image)
        except EncodeError as e:
            self.log.error("failed to stage frame: %s", e)
            return False

        h, w = staged.shape[:2]
        meta = metadata_json(w, h, pose)
        self._encode_in_flight = True
        future = self._encode_executor().submit(self.encoder.encode)
        future.add_done_callback(lambda f: self.dispatcher.post(self._finish_frame, f, meta))
        return True

    def _finish_frame(self, future: Future, meta: str) -> None:
        try:
            exc = future.exception()
            if exc is not None:
                self.log.error("image encoding failed: %s", exc)
                return
            if not self.is_connected:
                self.log.debug("connection gone, dropping encoded frame")
                return
            # receiver pairs the two by timestamp
            if self.send_text(meta):
                self.send_bytes(future.result())
        finally:
            self._encode_in_flight = False
