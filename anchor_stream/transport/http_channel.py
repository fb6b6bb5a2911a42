from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from ..anchor_types import CameraPose
from ..encoding import EncodeError, FrameEncoder
from ..protocol import error_json, metadata_json
from ..scheduler import Dispatcher
from .base import FrameChannel, Spawn, spawn_thread


@dataclass
class RequestOutcome:
    ok: bool
    body: str
    status_code: Optional[int] = None


def classify_response(status_code: int, text: Optional[str]) -> RequestOutcome:
    body = text or ""
    if status_code == 200:
        try:
            json.loads(body)
        except ValueError:
            detail = body if body.strip() else error_json("Empty response body")
            return RequestOutcome(False, detail, status_code)
        return RequestOutcome(True, body, status_code)
    if not body.strip():
        body = error_json(f"Received status {status_code}")
    return RequestOutcome(False, body, status_code)


class RequestChannel(FrameChannel):
    """
    Single-flight multipart POST of one frame plus its metadata.

    The request runs on a background thread; the outcome is posted back to the
    owner thread, which clears the in-flight flag and fires exactly one of
    ``instruction_received`` / ``error_received``.
    """

    def __init__(
        self,
        url: str,
        dispatcher: Dispatcher,
        timeout: float = 10.0,
        jpeg_quality: int = 75,
        session: Optional[requests.Session] = None,
        spawn: Optional[Spawn] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__()
        self.url = url
        self.dispatcher = dispatcher
        self.timeout = float(timeout)
        self.encoder = FrameEncoder(jpeg_quality)
        self.session = session or requests.Session()
        self._spawn = spawn or spawn_thread
        self.log = logger or logging.getLogger(__name__)
        self._in_flight = False
        self._closed = False

    @property
    def is_busy(self) -> bool:
        return self._in_flight

    def send_frame(self, image: Any, pose: CameraPose) -> bool:
        if self._in_flight:
            self.log.warning("request already in progress, skipping frame")
            return False
        if image is None:
            self.log.error("no frame to send")
            return False

        try:
            staged = self.encoder.stage(image)
        except EncodeError as e:
            self.log.error("failed to stage frame: %s", e)
            return False

        h, w = staged.shape[:2]
        meta = metadata_json(w, h, pose)
        self._in_flight = True
        self._spawn(lambda: self._post(meta))
        return True

    def _post(self, meta: str) -> None:
        # background thread
        try:
            jpeg = self.encoder.encode()
        except EncodeError as e:
            self.log.error("failed to encode frame: %s", e)
            self.dispatcher.post(self._finish, None)
            return

        files = {
            "image": ("frame.jpg", jpeg, "image/jpeg"),
            "metadata": (None, meta, "application/json"),
        }
        self.log.debug("POST %s metadata=%s", self.url, meta)
        try:
            resp = self.session.post(self.url, files=files, timeout=self.timeout)
            outcome = classify_response(resp.status_code, resp.text)
        except requests.RequestException as e:
            outcome = RequestOutcome(False, error_json(str(e)))
        except Exception as e:
            # anything else must still release the in-flight flag
            self.log.exception("unexpected failure posting frame")
            outcome = RequestOutcome(False, error_json(str(e)))
        self.dispatcher.post(self._finish, outcome)

    def _finish(self, outcome: Optional[RequestOutcome]) -> None:
        self._in_flight = False
        if outcome is None:
            return
        if self._closed:
            self.log.debug("discarding response after close")
            return
        if outcome.ok:
            self.log.info("instruction received (%d bytes)", len(outcome.body))
            self.instruction_received.emit(outcome.body)
        else:
            self.log.warning("request failed status=%s body=%s", outcome.status_code, outcome.body)
            self.error_received.emit(outcome.body)

    def open(self) -> None:
        self._closed = False

    def close(self) -> None:
        self._closed = True
        self.session.close()
