"""Unprojection and placement utilities for server detections."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .anchor_types import CameraIntrinsics, CameraPose


DEFAULT_MAX_RAYCAST_DISTANCE = 10.0
DEFAULT_PLACEMENT_DISTANCE = 1.0

logger = logging.getLogger(__name__)


@dataclass
class Ray:
    origin: np.ndarray
    direction: np.ndarray  # unit length

    def point_at(self, distance: float) -> np.ndarray:
        return self.origin + self.direction * float(distance)


@dataclass
class SurfaceHit:
    point: np.ndarray
    hit: bool = True


@dataclass
class Placement:
    point: np.ndarray
    distance: float
    hit: bool
    ray: Ray


class SurfaceQuery(ABC):
    @abstractmethod
    def raycast(self, ray: Ray, max_distance: float) -> Optional[SurfaceHit]: ...


class PlaneSurface(SurfaceQuery):
    """Infinite plane, e.g. a floor at a known height."""

    def __init__(self, point: Sequence[float] = (0.0, 0.0, 0.0), normal: Sequence[float] = (0.0, 1.0, 0.0)):
        self.point = np.asarray(point, dtype=float).reshape(3)
        n = np.asarray(normal, dtype=float).reshape(3)
        norm = np.linalg.norm(n)
        if norm == 0:
            raise ValueError("plane normal must be non-zero")
        self.normal = n / norm

    def raycast(self, ray: Ray, max_distance: float) -> Optional[SurfaceHit]:
        denom = float(np.dot(self.normal, ray.direction))
        if abs(denom) < 1e-9:
            return None
        t = float(np.dot(self.normal, self.point - ray.origin)) / denom
        if t < 0 or t > max_distance:
            return None
        return SurfaceHit(ray.point_at(t))


def quaternion_to_matrix(q: Sequence[float]) -> np.ndarray:
    """
    Convert an (x, y, z, w) quaternion to a 3x3 rotation matrix.

    The quaternion is normalized first; a zero quaternion yields identity.
    """
    x, y, z, w = (float(c) for c in q)
    n = x * x + y * y + z * z + w * w
    if n < 1e-12:
        return np.eye(3)
    s = 2.0 / n

    return np.array([
        [1 - s * (y * y + z * z), s * (x * y - z * w), s * (x * z + y * w)],
        [s * (x * y + z * w), 1 - s * (x * x + z * z), s * (y * z - x * w)],
        [s * (x * z - y * w), s * (y * z + x * w), 1 - s * (x * x + y * y)],
    ])


def rotate_vector(q: Sequence[float], v: Sequence[float]) -> np.ndarray:
    return quaternion_to_matrix(q) @ np.asarray(v, dtype=float).reshape(3)


def camera_direction(u: float, v: float, intrinsics: CameraIntrinsics) -> np.ndarray:
    """
    Camera-space direction through a normalized image point.

    Image row 0 is the top of the frame while the principal point is measured
    from the bottom-left, hence the (1 - v) flip.

    Args:
        u: Normalized horizontal coordinate, clamped to [0, 1]
        v: Normalized vertical coordinate, clamped to [0, 1]
        intrinsics: Camera intrinsics in pixels

    Returns:
        (3,) direction with z = 1 (not normalized)
    """
    u = min(max(float(u), 0.0), 1.0)
    v = min(max(float(v), 0.0), 1.0)
    x = (u * intrinsics.width - intrinsics.cx) / intrinsics.fx
    y = ((1.0 - v) * intrinsics.height - intrinsics.cy) / intrinsics.fy
    return np.array([x, y, 1.0])


def unproject(u: float, v: float, intrinsics: CameraIntrinsics, pose: CameraPose) -> Ray:
    direction = rotate_vector(pose.rotation, camera_direction(u, v, intrinsics))
    direction = direction / np.linalg.norm(direction)
    return Ray(np.asarray(pose.position, dtype=float).reshape(3), direction)


def resolve_placement(
    u: float,
    v: float,
    intrinsics: CameraIntrinsics,
    pose: CameraPose,
    surface: Optional[SurfaceQuery],
    max_distance: float = DEFAULT_MAX_RAYCAST_DISTANCE,
    default_distance: float = DEFAULT_PLACEMENT_DISTANCE,
) -> Placement:
    """
    Resolve a normalized detection into a world placement point.

    A surface hit places the point on the surface; no hit (or a failing
    surface query) places it along the ray at ``default_distance``.
    """
    ray = unproject(u, v, intrinsics, pose)

    result = None
    if surface is not None:
        try:
            result = surface.raycast(ray, max_distance)
        except Exception as e:
            logger.warning("surface raycast failed, using default distance: %s", e)
            result = None

    if result is not None and result.hit:
        point = np.asarray(result.point, dtype=float).reshape(3)
        return Placement(point, float(np.linalg.norm(ray.origin - point)), True, ray)

    return Placement(ray.point_at(default_distance), float(default_distance), False, ray)
