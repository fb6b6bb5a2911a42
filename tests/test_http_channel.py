import json

import numpy as np
import requests

from anchor_stream.anchor_types import CameraPose
from anchor_stream.transport.http_channel import RequestChannel, classify_response


class FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, result):
        """``result`` is a FakeResponse or an exception to raise."""
        self.result = result
        self.calls = []
        self.closed = False

    def post(self, url, files=None, timeout=None):
        self.calls.append({"url": url, "files": files, "timeout": timeout})
        if isinstance(self.result, Exception):
            raise self.result
        return self.result

    def close(self):
        self.closed = True


class DeferredSpawn:
    def __init__(self):
        """Hold background work until the test runs it."""
        self.pending = []

    def __call__(self, fn):
        self.pending.append(fn)

    def run_all(self):
        while self.pending:
            self.pending.pop(0)()


FRAME = np.zeros((12, 16, 3), dtype=np.uint8)


def _channel(dispatcher, session, spawn):
    ch = RequestChannel(
        "http://server/get-ar-instructions", dispatcher, timeout=2.5, session=session, spawn=spawn
    )
    ok, err = [], []
    ch.instruction_received.connect(ok.append)
    ch.error_received.connect(err.append)
    return ch, ok, err


def test_success_fires_single_instruction_callback(dispatcher):
    """A 200 JSON body reaches instruction_received once, on drain."""
    body = '{"current_task_status": "ok", "objects": []}'
    session = FakeSession(FakeResponse(200, body))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    assert ch.send_frame(FRAME, CameraPose.identity()) is True
    assert ch.is_busy
    spawn.run_all()
    assert ok == []  # not yet marshalled to the owner thread
    dispatcher.run_pending()

    assert ok == [body]
    assert err == []
    assert not ch.is_busy


def test_request_is_multipart_with_metadata(dispatcher):
    session = FakeSession(FakeResponse(200, "{}"))
    spawn = DeferredSpawn()
    ch, _, _ = _channel(dispatcher, session, spawn)

    ch.send_frame(FRAME, CameraPose((1.0, 2.0, 3.0), (0.0, 0.0, 0.0, 1.0)))
    spawn.run_all()

    call = session.calls[0]
    assert call["url"] == "http://server/get-ar-instructions"
    assert call["timeout"] == 2.5
    name, data, ctype = call["files"]["image"]
    assert (name, ctype) == ("frame.jpg", "image/jpeg")
    assert data[:2] == b"\xff\xd8"
    _, meta, meta_type = call["files"]["metadata"]
    assert meta_type == "application/json"
    meta = json.loads(meta)
    assert (meta["width"], meta["height"]) == (16, 12)
    assert meta["camera_pose"]["position"] == {"x": 1.0, "y": 2.0, "z": 3.0}


def test_second_send_while_outstanding_is_skipped(dispatcher):
    """Single-flight: no second network call and no duplicate callback."""
    session = FakeSession(FakeResponse(200, "{}"))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    assert ch.send_frame(FRAME, CameraPose.identity()) is True
    assert ch.send_frame(FRAME, CameraPose.identity()) is False
    spawn.run_all()
    dispatcher.run_pending()

    assert len(session.calls) == 1
    assert len(ok) == 1
    assert err == []

    # free again once the first result landed
    assert ch.send_frame(FRAME, CameraPose.identity()) is True


def test_transport_failure_becomes_error_document(dispatcher):
    session = FakeSession(requests.ConnectionError("refused"))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    ch.send_frame(FRAME, CameraPose.identity())
    spawn.run_all()
    dispatcher.run_pending()

    assert ok == []
    assert json.loads(err[0]) == {"error": "refused"}
    assert not ch.is_busy


def test_timeout_is_an_error_outcome(dispatcher):
    session = FakeSession(requests.Timeout("timed out"))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    ch.send_frame(FRAME, CameraPose.identity())
    spawn.run_all()
    dispatcher.run_pending()
    assert ok == []
    assert "timed out" in json.loads(err[0])["error"]


def test_unexpected_failure_still_releases_channel(dispatcher):
    """A non-requests exception becomes an error outcome and frees the channel."""
    session = FakeSession(ValueError("bad multipart field"))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    ch.send_frame(FRAME, CameraPose.identity())
    spawn.run_all()
    dispatcher.run_pending()

    assert ok == []
    assert json.loads(err[0]) == {"error": "bad multipart field"}
    assert not ch.is_busy
    assert ch.send_frame(FRAME, CameraPose.identity()) is True


def test_non_200_passes_body_or_synthesizes(dispatcher):
    assert classify_response(500, '{"error": "boom"}').body == '{"error": "boom"}'
    out = classify_response(503, "")
    assert not out.ok
    assert json.loads(out.body) == {"error": "Received status 503"}
    assert not classify_response(204, "").ok


def test_malformed_200_body_is_an_error():
    out = classify_response(200, "<html>oops</html>")
    assert not out.ok
    assert out.body == "<html>oops</html>"
    assert json.loads(classify_response(200, "").body)["error"]


def test_missing_frame_is_skipped(dispatcher):
    session = FakeSession(FakeResponse(200, "{}"))
    spawn = DeferredSpawn()
    ch, _, _ = _channel(dispatcher, session, spawn)
    assert ch.send_frame(None, CameraPose.identity()) is False
    assert spawn.pending == []
    assert not ch.is_busy


def test_results_after_close_are_discarded(dispatcher):
    session = FakeSession(FakeResponse(200, "{}"))
    spawn = DeferredSpawn()
    ch, ok, err = _channel(dispatcher, session, spawn)

    ch.send_frame(FRAME, CameraPose.identity())
    ch.close()
    spawn.run_all()
    dispatcher.run_pending()
    assert ok == [] and err == []
    assert session.closed
