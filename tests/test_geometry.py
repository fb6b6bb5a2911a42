import math

import numpy as np
import pytest

from anchor_stream.anchor_types import CameraIntrinsics, CameraPose
from anchor_stream.geometry import (
    PlaneSurface,
    Ray,
    SurfaceHit,
    SurfaceQuery,
    camera_direction,
    quaternion_to_matrix,
    resolve_placement,
    rotate_vector,
    unproject,
)

from conftest import FixedHitSurface, NoHitSurface


INTR = CameraIntrinsics(fx=500.0, fy=500.0, cx=320.0, cy=240.0, width=640, height=480)


def _yaw(deg):
    """Quaternion (x, y, z, w) rotating about +Y."""
    half = math.radians(deg) / 2
    return (0.0, math.sin(half), 0.0, math.cos(half))


def test_center_pixel_looks_straight_ahead():
    """u=v=0.5 with a centered principal point gives (0, 0, 1)."""
    ray = unproject(0.5, 0.5, INTR, CameraPose.identity())
    assert np.allclose(ray.direction, [0.0, 0.0, 1.0])
    assert np.allclose(ray.origin, [0.0, 0.0, 0.0])


def test_no_hit_places_at_default_distance():
    """Without a surface hit the point sits 1.0 along the ray."""
    p = resolve_placement(0.5, 0.5, INTR, CameraPose.identity(), NoHitSurface())
    assert p.hit is False
    assert p.distance == pytest.approx(1.0)
    assert np.allclose(p.point, [0.0, 0.0, 1.0])


def test_v_is_flipped_top_row_points_up():
    """Image row 0 is the top, so v=0 must produce a positive y direction."""
    top = camera_direction(0.5, 0.0, INTR)
    bottom = camera_direction(0.5, 1.0, INTR)
    assert top[1] == pytest.approx((480 - 240) / 500.0)
    assert bottom[1] == pytest.approx(-240 / 500.0)
    assert top[2] == 1.0


def test_coordinates_are_clamped():
    """Out-of-range u/v behave like the nearest edge."""
    assert np.allclose(camera_direction(-0.5, 2.0, INTR), camera_direction(0.0, 1.0, INTR))
    assert np.allclose(camera_direction(1.7, -3.0, INTR), camera_direction(1.0, 0.0, INTR))


def test_quaternion_identity_and_yaw():
    """Identity leaves vectors alone; 90 deg yaw maps +Z onto +X."""
    assert np.allclose(quaternion_to_matrix((0, 0, 0, 1)), np.eye(3))
    assert np.allclose(rotate_vector(_yaw(90), [0, 0, 1]), [1.0, 0.0, 0.0], atol=1e-9)


def test_quaternion_is_normalized():
    """A non-unit quaternion still yields a proper rotation."""
    R = quaternion_to_matrix((0.0, 2.0, 0.0, 2.0))
    assert np.allclose(R @ R.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_pose_rotation_and_translation_applied():
    """The world ray starts at the pose position and follows its rotation."""
    pose = CameraPose((1.0, 2.0, 3.0), _yaw(90))
    p = resolve_placement(0.5, 0.5, INTR, pose, NoHitSurface())
    assert np.allclose(p.ray.origin, [1.0, 2.0, 3.0])
    assert np.allclose(p.point, [2.0, 2.0, 3.0], atol=1e-9)


def test_surface_hit_uses_hit_point_and_distance():
    """A hit places the marker on the surface and measures from the origin."""
    surface = FixedHitSurface([0.0, 0.0, 4.0])
    p = resolve_placement(0.5, 0.5, INTR, CameraPose.identity(), surface)
    assert p.hit is True
    assert np.allclose(p.point, [0.0, 0.0, 4.0])
    assert p.distance == pytest.approx(4.0)
    assert surface.calls[0][1] == pytest.approx(10.0)


def test_surface_reporting_miss_status_falls_back():
    """A SurfaceHit flagged as not-hit is treated like no hit."""

    class MissSurface(SurfaceQuery):
        def raycast(self, ray, max_distance):
            return SurfaceHit(np.array([9.0, 9.0, 9.0]), hit=False)

    p = resolve_placement(0.5, 0.5, INTR, CameraPose.identity(), MissSurface())
    assert p.hit is False
    assert np.allclose(p.point, [0.0, 0.0, 1.0])


def test_failing_surface_falls_back():
    """Exceptions from the surface query never escape."""

    class BrokenSurface(SurfaceQuery):
        def raycast(self, ray, max_distance):
            raise RuntimeError("depth unavailable")

    p = resolve_placement(0.5, 0.5, INTR, CameraPose.identity(), BrokenSurface())
    assert p.hit is False
    assert p.distance == pytest.approx(1.0)


def test_plane_surface_hits_floor():
    """A downward ray from 1.6 m meets the floor plane in front of the camera."""
    floor = PlaneSurface((0.0, 0.0, 0.0), (0.0, 1.0, 0.0))
    ray = Ray(np.array([0.0, 1.6, 0.0]), np.array([0.0, -1.0, 1.0]) / math.sqrt(2))
    hit = floor.raycast(ray, 10.0)
    assert hit is not None
    assert np.allclose(hit.point, [0.0, 0.0, 1.6])


def test_plane_surface_respects_max_distance_and_direction():
    """Hits behind the origin or past the max distance are misses."""
    floor = PlaneSurface((0.0, 0.0, 0.0), (0.0, 1.0, 0.0))
    up = Ray(np.array([0.0, 1.6, 0.0]), np.array([0.0, 1.0, 0.0]))
    assert floor.raycast(up, 10.0) is None

    down = Ray(np.array([0.0, 20.0, 0.0]), np.array([0.0, -1.0, 0.0]))
    assert floor.raycast(down, 10.0) is None

    parallel = Ray(np.array([0.0, 1.0, 0.0]), np.array([1.0, 0.0, 0.0]))
    assert floor.raycast(parallel, 10.0) is None


def test_plane_requires_normal():
    with pytest.raises(ValueError):
        PlaneSurface((0, 0, 0), (0, 0, 0))


def test_intrinsics_from_resolution():
    intr = CameraIntrinsics.from_resolution(640, 480)
    assert (intr.cx, intr.cy) == (320.0, 240.0)
    assert intr.fx == intr.fy == 640.0
