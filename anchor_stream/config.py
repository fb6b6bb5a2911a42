from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional


TRANSPORTS = ("http", "websocket")


@dataclass
class SurfaceConfig:
    """Environment surface used to resolve placement rays."""

    type: str = "none"  # "none", "plane"
    point: list[float] = field(default_factory=lambda: [0.0, -1.5, 0.0])
    normal: list[float] = field(default_factory=lambda: [0.0, 1.0, 0.0])

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StreamConfig:
    camera_name: str = "cam"
    device: int | str = 0
    fps: int = 15
    width: int = 1280
    height: int = 960
    calibration_path: Optional[str] = None
    focal_length: Optional[float] = None  # px; defaults to image width
    session_root: str = "data/sessions"
    duration_sec: float = 0.0  # 0 runs until stopped
    max_frames: Optional[int] = None
    dry_run: bool = False
    transport: str = "http"  # "http", "websocket"
    server_url: str = "http://localhost:8000/get-ar-instructions"
    stream_url: str = "ws://localhost:8765"
    request_timeout_sec: float = 10.0
    send_interval_sec: float = 1.0
    reconnect_delay_sec: float = 3.0
    auto_reconnect: bool = True
    jpeg_quality: int = 75
    stream_jpeg_quality: int = 50  # modest size for continuous streaming
    start_paused: bool = False
    send_camera_frames: bool = True
    show_rays: bool = False
    ray_duration_sec: float = 2.0
    max_raycast_distance: float = 10.0
    default_placement_distance: float = 1.0
    camera_position: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    camera_rotation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 1.0])
    surface: SurfaceConfig = field(default_factory=SurfaceConfig)
    save_anchors: bool = True

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def apply_overrides(self, **kwargs: Any) -> "StreamConfig":
        for key, value in kwargs.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self


def _float_list(value: Any, length: int, name: str) -> list[float]:
    if not isinstance(value, (list, tuple)) or len(value) != length:
        raise ValueError(f"{name} must be a list of {length} numbers")
    return [float(v) for v in value]


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover - optional dependency
        raise RuntimeError(
            "YAML config requested but PyYAML is not installed. "
            "Install with: pip install pyyaml"
        ) from exc
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, dict):
        raise ValueError("YAML config root must be a mapping")
    return data


def load_config(path: str | Path) -> StreamConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        raw = _load_yaml(p)
    else:
        with p.open("r", encoding="utf-8") as fp:
            raw = json.load(fp)

    if not isinstance(raw, dict):
        raise ValueError("Config root must be a JSON/YAML object")

    cfg = StreamConfig()
    cfg.camera_name = str(raw.get("camera_name", cfg.camera_name))
    cfg.device = raw.get("device", cfg.device)
    cfg.fps = int(raw.get("fps", cfg.fps))
    cfg.width = int(raw.get("width", cfg.width))
    cfg.height = int(raw.get("height", cfg.height))
    cfg.calibration_path = raw.get("calibration_path", cfg.calibration_path)
    if cfg.calibration_path is not None:
        cfg.calibration_path = str(cfg.calibration_path)
    cfg.focal_length = raw.get("focal_length", cfg.focal_length)
    if cfg.focal_length is not None:
        cfg.focal_length = float(cfg.focal_length)
    cfg.session_root = str(raw.get("session_root", cfg.session_root))
    cfg.duration_sec = float(raw.get("duration_sec", cfg.duration_sec))
    cfg.max_frames = raw.get("max_frames", cfg.max_frames)
    if cfg.max_frames is not None:
        cfg.max_frames = int(cfg.max_frames)
    cfg.dry_run = bool(raw.get("dry_run", cfg.dry_run))

    cfg.transport = str(raw.get("transport", cfg.transport)).lower()
    if cfg.transport not in TRANSPORTS:
        raise ValueError(f"transport must be one of {TRANSPORTS}, got {cfg.transport!r}")
    cfg.server_url = str(raw.get("server_url", cfg.server_url))
    cfg.stream_url = str(raw.get("stream_url", cfg.stream_url))
    cfg.request_timeout_sec = float(raw.get("request_timeout_sec", cfg.request_timeout_sec))
    cfg.send_interval_sec = float(raw.get("send_interval_sec", cfg.send_interval_sec))
    cfg.reconnect_delay_sec = float(raw.get("reconnect_delay_sec", cfg.reconnect_delay_sec))
    cfg.auto_reconnect = bool(raw.get("auto_reconnect", cfg.auto_reconnect))
    cfg.jpeg_quality = int(raw.get("jpeg_quality", cfg.jpeg_quality))
    cfg.stream_jpeg_quality = int(raw.get("stream_jpeg_quality", cfg.stream_jpeg_quality))

    cfg.start_paused = bool(raw.get("start_paused", cfg.start_paused))
    cfg.send_camera_frames = bool(raw.get("send_camera_frames", cfg.send_camera_frames))
    cfg.show_rays = bool(raw.get("show_rays", cfg.show_rays))
    cfg.ray_duration_sec = float(raw.get("ray_duration_sec", cfg.ray_duration_sec))
    cfg.max_raycast_distance = float(raw.get("max_raycast_distance", cfg.max_raycast_distance))
    cfg.default_placement_distance = float(
        raw.get("default_placement_distance", cfg.default_placement_distance)
    )
    cfg.camera_position = _float_list(raw.get("camera_position", cfg.camera_position), 3, "camera_position")
    cfg.camera_rotation = _float_list(raw.get("camera_rotation", cfg.camera_rotation), 4, "camera_rotation")
    cfg.save_anchors = bool(raw.get("save_anchors", cfg.save_anchors))

    # Load surface config if present
    surf_raw = raw.get("surface")
    if surf_raw is not None and isinstance(surf_raw, dict):
        surf = SurfaceConfig()
        surf.type = str(surf_raw.get("type", surf.type)).lower()
        surf.point = _float_list(surf_raw.get("point", surf.point), 3, "surface.point")
        surf.normal = _float_list(surf_raw.get("normal", surf.normal), 3, "surface.normal")
        cfg.surface = surf

    return cfg
