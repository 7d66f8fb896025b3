# slamkit

Building blocks for visual odometry and bundle adjustment, written on top of
NumPy and SciPy. Images are plain two-dimensional grey-scale NumPy arrays,
keypoints are `(x, y)` pixel pairs.

## What is inside

| Module | Purpose |
| --- | --- |
| `slamkit.rotation` | `dot_product`, `cross_product`, angle-axis/quaternion conversions (quaternions ordered w, x, y, z) and `angle_axis_rotate_point` |
| `slamkit.sampling` | `rand_double` and `rand_normal` (Marsaglia polar method), taking an optional `random.Random` |
| `slamkit.reprojection` | `cam_projection_with_distortion` for 9-parameter cameras and the `SnavelyReprojectionError` residual |
| `slamkit.bal` | `BALProblem`: reading, writing (BAL text and PLY), normalising and perturbing BAL problems; `BALFormatError`, `median`, `perturb_point3` |
| `slamkit.orb` | `compute_orb` (256-bit oriented BRIEF descriptors), `hamming_distance`, `bf_match` and the `Match` record |
| `slamkit.lie` | `hat`, `so3_exp`, `so3_log` and the `SE3` rigid-body transform |
| `slamkit.matching` | `camera_matrix`, `pixel2cam`, `filter_matches` and `epipolar_constraint` |
| `slamkit.pnp` | `build_3d2d_pairs`, `reprojection_jacobian` and Gauss–Newton pose refinement `bundle_adjustment_gauss_newton` |
| `slamkit.icp` | `build_3d3d_pairs`, SVD alignment `pose_estimation_3d3d` and Levenberg–Marquardt refinement `bundle_adjustment_3d3d` |
| `slamkit.triangulation` | `triangulate_points` (linear DLT), `triangulation` and the depth plotting colour `get_color` |
| `slamkit.imaging` | Bilinear sampling (`pixel_value_clamped`, `pixel_value_direct`), `resize_image` and `build_pyramid` |
| `slamkit.optical_flow` | Lucas–Kanade tracking: `optical_flow_single_level` and the four-level `optical_flow_multi_level` |
| `slamkit.direct_method` | `Intrinsics`, `JacobianAccumulator`, `disparity_to_depth` and single/multi-layer photometric pose estimation |
| `slamkit.bundle_adjustment` | `solve_ba`, Huber-robust bundle adjustment of a `BALProblem` with SciPy, and the `main` command |

Progress and diagnostics of the iterative solvers go to the standard
`logging` module under each module's name.

## Installation

```
pip install .
```

The tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## Command line

Solve a BAL dataset:

```
slamkit-ba bal_data.txt
```

The problem is loaded, normalised and perturbed (rotation, translation and
point noise of 0.1, 0.5 and 0.5), the starting state is written to
`initial.ply` in the current directory, bundle adjustment is run for up to 40
function evaluations and the result is written to `final.ply`. Both files are
ASCII PLY point clouds: camera centres in green, 3D points in white. Called
with anything other than one argument, the command prints its usage and
exits with status 1.

## Library use

Rotations:

```python
from slamkit.rotation import angle_axis_rotate_point, angle_axis_to_quaternion

rotated = angle_axis_rotate_point([0.0, 0.0, 1.5707963], [1.0, 0.0, 0.0])
quaternion = angle_axis_to_quaternion([0.1, 0.2, 0.3])
```

Rigid-body motion; twists are ordered (translation part, rotation part):

```python
from slamkit.lie import SE3

pose = SE3.exp([0.1, 0.0, 0.0, 0.0, 0.05, 0.0])
moved = pose.transform([1.0, 2.0, 3.0])
back = pose.inverse() @ pose
print(back.matrix())
```

Bundle adjustment from Python:

```python
from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_ba

problem = BALProblem.read("bal_data.txt", False)
problem.normalize()
problem.write_to_ply_file("initial.ply")
result = solve_ba(problem, 40)
print(result.cost)
problem.write_to_ply_file("final.ply")
problem.write_to_file("solved.txt")
```

`solve_ba` writes the estimate back into the problem and returns SciPy's
`least_squares` result. A malformed BAL file raises `BALFormatError`.
`perturb` accepts an optional `random.Random`; without one a module-level
generator with a fixed seed is used, so runs are repeatable.

Descriptor matching on grey-scale images:

```python
from slamkit.orb import compute_orb, bf_match
from slamkit.matching import filter_matches

descriptors_1 = compute_orb(image_1, keypoints_1)
descriptors_2 = compute_orb(image_2, keypoints_2)
matches = filter_matches(bf_match(descriptors_1, descriptors_2))
```

Keypoints within 16 pixels of the image border get `None` instead of a
descriptor and are never matched; `bf_match` keeps only matches with a
Hamming distance below 40, and `filter_matches` keeps those no farther than
twice the smallest distance, or 30 at least.

Tracking keypoints between two frames:

```python
from slamkit.optical_flow import optical_flow_multi_level

tracked, success = optical_flow_multi_level(image_1, image_2, keypoints_1, inverse=True)
```

## What the package does not do

- It does not detect keypoints: there is no FAST, ORB or good-features
  detector. Keypoints have to be supplied by the caller.
- It does not read, write, draw on or display images, and does not capture
  from cameras or video streams. Images come in as NumPy arrays.
- It does not estimate fundamental, essential or homography matrices, nor
  recover a pose from them; `triangulation` and `epipolar_constraint` take the
  rotation and translation as given.
- The only command is `slamkit-ba`; the other pieces are library functions.