"""JSON documents exchanged with the inference server."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from .anchor_types import CameraPose, Detection, DetectionReport, Instruction


Body = Union[str, bytes, bytearray]


class ProtocolError(ValueError):
    """A server document does not have the expected shape."""


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def pose_to_dict(pose: CameraPose) -> dict[str, Any]:
    px, py, pz = (float(c) for c in pose.position)
    rx, ry, rz, rw = (float(c) for c in pose.rotation)
    return {
        "position": {"x": px, "y": py, "z": pz},
        "rotation": {"x": rx, "y": ry, "z": rz, "w": rw},
    }


def pose_from_dict(data: Optional[dict[str, Any]]) -> CameraPose:
    if not data:
        return CameraPose.identity()
    try:
        p = data["position"]
        r = data["rotation"]
        return CameraPose(
            (float(p["x"]), float(p["y"]), float(p["z"])),
            (float(r["x"]), float(r["y"]), float(r["z"]), float(r["w"])),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid camera pose: {exc}") from exc


def build_metadata(width: int, height: int, pose: CameraPose, timestamp: Optional[str] = None) -> dict[str, Any]:
    return {
        "timestamp": timestamp or utc_timestamp(),
        "width": int(width),
        "height": int(height),
        "camera_pose": pose_to_dict(pose),
    }


def metadata_json(width: int, height: int, pose: CameraPose, timestamp: Optional[str] = None) -> str:
    return json.dumps(build_metadata(width, height, pose, timestamp))


def text_message_json(message: str, timestamp: Optional[str] = None) -> str:
    return json.dumps({"timestamp": timestamp or utc_timestamp(), "message": message})


def detections_json(reports: Iterable[DetectionReport], timestamp: Optional[str] = None) -> str:
    items = []
    for r in reports:
        x, y, z = (float(c) for c in r.world_position)
        items.append({
            "className": r.class_name,
            "confidence": float(r.confidence),
            "worldPosition": {"x": x, "y": y, "z": z},
        })
    return json.dumps({"timestamp": timestamp or utc_timestamp(), "detections": items})


def _load_object(body: Body) -> dict[str, Any]:
    if isinstance(body, (bytes, bytearray)):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"body is not UTF-8: {exc}") from exc
    if not body or not body.strip():
        raise ProtocolError("empty body")
    try:
        raw = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"malformed JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProtocolError("document root must be a JSON object")
    return raw


def _parse_detection(obj: Any) -> Detection:
    if not isinstance(obj, dict):
        raise ProtocolError("object entries must be JSON objects")
    title = obj.get("title")
    if not isinstance(title, str) or not title:
        raise ProtocolError("object title must be a non-empty string")

    coords = obj.get("coordinates")
    if coords is None:
        return Detection(title)
    if not isinstance(coords, dict):
        raise ProtocolError(f"coordinates of '{title}' must be an object or null")
    try:
        return Detection(title, float(coords["x"]), float(coords["y"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid coordinates for '{title}': {exc}") from exc


def parse_instruction(body: Body) -> Instruction:
    raw = _load_object(body)

    status = raw.get("current_task_status")
    if status is not None and not isinstance(status, str):
        raise ProtocolError("current_task_status must be a string")
    message = raw.get("message")
    if message is not None and not isinstance(message, str):
        raise ProtocolError("message must be a string")

    objects = raw.get("objects")
    if objects is None:
        detections = None
    elif isinstance(objects, list):
        detections = [_parse_detection(o) for o in objects]
    else:
        raise ProtocolError("objects must be a list")

    return Instruction(status or "", message, detections)


def parse_error(body: Body) -> str:
    raw = _load_object(body)
    error = raw.get("error")
    if error is None:
        return "Unknown HTTP error"
    return str(error)


def error_json(message: str) -> str:
    return json.dumps({"error": message})
