import numpy as np
import pytest

from slamkit.lie import so3_exp
from slamkit.matching import camera_matrix
from slamkit.orb import Match
from slamkit.triangulation import get_color, triangulate_points, triangulation


@pytest.fixture
def views():
    rng = np.random.default_rng(11)
    points = np.column_stack(
        [
            rng.uniform(-1.5, 1.5, 20),
            rng.uniform(-1.0, 1.0, 20),
            rng.uniform(3.0, 8.0, 20),
        ]
    )
    rotation = so3_exp([0.05, -0.1, 0.02])
    translation = np.array([-1.0, 0.1, 0.05])
    return points, rotation, translation


def test_get_color_clamps_low():
    assert get_color(0.0) == get_color(10.0)


def test_get_color_clamps_high():
    assert get_color(1000.0) == get_color(50.0)


def test_get_color_midrange_value():
    assert get_color(20.0) == pytest.approx((127.5, 0.0, 127.5))


def test_get_color_blue_grows_with_depth():
    blues = [get_color(d)[0] for d in (10, 20, 30, 40, 50)]
    assert blues == sorted(blues)
    assert all(get_color(d)[1] == 0.0 for d in (5, 25, 60))


def test_triangulate_points_recovers_normalized(views):
    points, rotation, translation = views
    cam2 = points @ rotation.T + translation
    pts1 = points[:, :2] / points[:, 2:]
    pts2 = cam2[:, :2] / cam2[:, 2:]
    t1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    t2 = np.hstack([rotation, translation.reshape(3, 1)])
    homogeneous = triangulate_points(t1, t2, pts1, pts2)
    assert homogeneous.shape == (20, 4)
    assert np.allclose(homogeneous[:, :3] / homogeneous[:, 3:], points, atol=1e-8)


def test_triangulate_points_rejects_bad_projection():
    with pytest.raises(ValueError):
        triangulate_points(np.eye(3), np.eye(3), [(0, 0)], [(0, 0)])


def test_triangulate_points_rejects_mismatched_counts():
    t = np.hstack([np.eye(3), np.zeros((3, 1))])
    with pytest.raises(ValueError):
        triangulate_points(t, t, [(0, 0), (1, 1)], [(0, 0)])


def test_triangulation_from_pixels(views):
    points, rotation, translation = views
    K = camera_matrix()
    cam2 = points @ rotation.T + translation
    pix1 = (points / points[:, 2:]) @ K.T
    pix2 = (cam2 / cam2[:, 2:]) @ K.T
    kp1 = [tuple(p[:2]) for p in pix1]
    kp2 = [tuple(p[:2]) for p in pix2[::-1]]
    n = len(points)
    matches = [Match(i, n - 1 - i, 0) for i in range(n)]
    result = triangulation(kp1, kp2, matches, rotation, translation, K)
    assert np.allclose(result, points, atol=1e-6)


def test_triangulation_without_matches_is_empty(views):
    _, rotation, translation = views
    result = triangulation([], [], [], rotation, translation)
    assert result.shape == (0, 3)