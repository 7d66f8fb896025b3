import random

import numpy as np
import pytest

from slamkit.bal import BALFormatError, BALProblem, median, perturb_point3
from slamkit.reprojection import cam_projection_with_distortion

CAMERAS = [
    [0.01, -0.02, 0.03, 0.1, -0.2, -1.0, 500.0, 0.01, 0.001],
    [-0.05, 0.04, 0.01, 0.3, 0.1, -2.0, 480.0, -0.02, 0.0005],
]
POINTS = [
    [1.0, 2.0, 8.0],
    [-1.5, 0.5, 10.0],
    [0.5, -1.0, 6.0],
    [2.5, 1.5, 12.0],
]
OBSERVATIONS = [
    (0, 0, -10.5, 20.25),
    (0, 1, 5.0, -3.5),
    (1, 2, 7.75, 1.0),
    (1, 3, -2.0, -8.0),
    (0, 3, 4.5, 6.5),
]


def _write_bal(path, cameras=CAMERAS, points=POINTS, observations=OBSERVATIONS):
    lines = [f"{len(cameras)} {len(points)} {len(observations)}"]
    lines += [f"{c} {p} {u} {v}" for c, p, u, v in observations]
    lines += [repr(v) for cam in cameras for v in cam]
    lines += [repr(v) for pt in points for v in pt]
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def bal_file(tmp_path):
    return _write_bal(tmp_path / "problem.txt")


def test_median_picks_upper_middle():
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 3.0


def test_median_of_empty_raises():
    with pytest.raises(ValueError):
        median([])


def test_perturb_point3_zero_sigma_keeps_point():
    np.testing.assert_allclose(perturb_point3(0.0, [1.0, 2.0, 3.0], random.Random(1)), [1, 2, 3])


def test_perturb_point3_is_seeded():
    a = perturb_point3(0.5, [1.0, 2.0, 3.0], random.Random(9))
    b = perturb_point3(0.5, [1.0, 2.0, 3.0], random.Random(9))
    np.testing.assert_array_equal(a, b)
    assert not np.allclose(a, [1.0, 2.0, 3.0])


def test_read_counts_and_values(bal_file):
    problem = BALProblem.read(bal_file)
    assert (problem.num_cameras, problem.num_points, problem.num_observations) == (2, 4, 5)
    assert problem.num_parameters == 9 * 2 + 3 * 4
    np.testing.assert_array_equal(problem.camera_index, [o[0] for o in OBSERVATIONS])
    np.testing.assert_array_equal(problem.point_index, [o[1] for o in OBSERVATIONS])
    np.testing.assert_allclose(problem.observations, [o[2:] for o in OBSERVATIONS])
    np.testing.assert_allclose(problem.cameras, CAMERAS)
    np.testing.assert_allclose(problem.points, POINTS)


def test_observation_accessors_are_views(bal_file):
    problem = BALProblem.read(bal_file)
    np.testing.assert_allclose(problem.camera_for_observation(2), CAMERAS[1])
    np.testing.assert_allclose(problem.point_for_observation(3), POINTS[3])
    problem.point_for_observation(3)[0] = 42.0
    assert problem.points[3, 0] == 42.0


def test_read_missing_values_raises(tmp_path):
    path = tmp_path / "short.txt"
    path.write_text("1 1 1\n0 0 1.0 2.0\n0.1 0.2\n")
    with pytest.raises(BALFormatError):
        BALProblem.read(path)


def test_read_bad_token_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 one 1\n")
    with pytest.raises(BALFormatError):
        BALProblem.read(path)


def test_read_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        BALProblem.read(tmp_path / "absent.txt")


def test_quaternion_layout(bal_file):
    problem = BALProblem.read(bal_file, use_quaternions=True)
    assert problem.camera_block_size == 10
    assert problem.num_parameters == 10 * 2 + 3 * 4
    np.testing.assert_allclose(problem.cameras[:, 4:], np.array(CAMERAS)[:, 3:])
    np.testing.assert_allclose(np.linalg.norm(problem.cameras[:, :4], axis=1), [1.0, 1.0])


def _read_written(path):
    lines = path.read_text().splitlines()
    header = [int(v) for v in lines[0].split()]
    n_obs = header[3]
    obs = [line.split() for line in lines[1 : 1 + n_obs]]
    params = [float(v) for v in lines[1 + n_obs :]]
    return header, obs, params


@pytest.mark.parametrize("use_quaternions", [False, True])
def test_write_to_file_keeps_parameters(bal_file, tmp_path, use_quaternions):
    problem = BALProblem.read(bal_file, use_quaternions=use_quaternions)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    header, obs, params = _read_written(out)
    assert header == [2, 2, 4, 5]
    assert [(int(o[0]), int(o[1])) for o in obs] == [(o[0], o[1]) for o in OBSERVATIONS]
    np.testing.assert_allclose([(float(o[2]), float(o[3])) for o in obs], [o[2:] for o in OBSERVATIONS])
    expected = [v for cam in CAMERAS for v in cam] + [v for pt in POINTS for v in pt]
    np.testing.assert_allclose(params, expected, atol=1e-12)


def test_write_to_ply_file(bal_file, tmp_path):
    problem = BALProblem.read(bal_file)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply_file(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "ply"
    assert lines[2] == "element vertex 6"
    end = lines.index("end_header")
    body = lines[end + 1 :]
    assert len(body) == 6
    assert all(line.endswith(" 0 255 0") for line in body[:2])
    assert all(line.endswith(" 255 255 255") for line in body[2:])
    np.testing.assert_allclose([float(v) for v in body[2].split()[:3]], POINTS[0])


def test_ply_camera_center_for_unrotated_camera(tmp_path):
    cameras = [[0.0, 0.0, 0.0, 1.0, -2.0, 3.0, 400.0, 0.0, 0.0]]
    path = _write_bal(tmp_path / "p.txt", cameras=cameras, points=POINTS[:1], observations=[(0, 0, 1.0, 1.0)])
    out = tmp_path / "c.ply"
    BALProblem.read(path).write_to_ply_file(out)
    lines = out.read_text().splitlines()
    center = [float(v) for v in lines[lines.index("end_header") + 1].split()[:3]]
    np.testing.assert_allclose(center, [-1.0, 2.0, -3.0])


def _predictions(problem):
    return np.array(
        [
            cam_projection_with_distortion(
                problem.camera_for_observation(i), problem.point_for_observation(i)
            )
            for i in range(problem.num_observations)
        ]
    )


def test_normalize_statistics_and_projection_invariance(bal_file):
    problem = BALProblem.read(bal_file)
    before = _predictions(problem)
    problem.normalize()
    points = problem.points
    for k in range(3):
        assert median(points[:, k]) == pytest.approx(0.0, abs=1e-9)
    assert median(np.abs(points).sum(axis=1)) == pytest.approx(100.0)
    np.testing.assert_allclose(_predictions(problem), before, rtol=1e-9, atol=1e-9)


def test_normalize_degenerate_raises(tmp_path):
    path = _write_bal(tmp_path / "d.txt", points=[[1.0, 1.0, 1.0]] * 3, observations=[(0, 0, 0.0, 0.0)])
    with pytest.raises(ValueError):
        BALProblem.read(path).normalize()


def test_perturb_zero_sigmas_keeps_problem(bal_file):
    problem = BALProblem.read(bal_file)
    original = problem.parameters.copy()
    problem.perturb(0.0, 0.0, 0.0, random.Random(5))
    np.testing.assert_allclose(problem.parameters, original, atol=1e-12)


def test_perturb_points_only(bal_file):
    problem = BALProblem.read(bal_file)
    cameras = problem.cameras.copy()
    problem.perturb(0.0, 0.0, 0.5, random.Random(5))
    np.testing.assert_allclose(problem.cameras, cameras, atol=1e-12)
    assert not np.allclose(problem.points, POINTS)


def test_perturb_translation_only(bal_file):
    problem = BALProblem.read(bal_file)
    problem.perturb(0.0, 0.5, 0.0, random.Random(5))
    np.testing.assert_allclose(problem.points, POINTS)
    np.testing.assert_allclose(problem.cameras[:, :3], np.array(CAMERAS)[:, :3], atol=1e-12)
    assert not np.allclose(problem.cameras[:, 3:6], np.array(CAMERAS)[:, 3:6])


def test_perturb_negative_sigma_raises(bal_file):
    problem = BALProblem.read(bal_file)
    with pytest.raises(ValueError):
        problem.perturb(-0.1, 0.5, 0.5)