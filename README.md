# colslam

Pose solvers and bookkeeping pieces for visual SLAM, written with NumPy.

## What is in the package

| Module | Contents |
| --- | --- |
| `colslam.epnp` | `CameraIntrinsics`, `solve_epnp`, `reprojection_error`, `qr_solve`, `mat_to_quat`, `relative_error` |
| `colslam.pnp_ransac` | `PnPRansac` (RANSAC around EPnP, with refinement) and its `PnPResult` |
| `colslam.sim3` | `compute_sim3` (Horn's quaternion method), `Sim3Transform`, `project`, `camera_to_image`, `Sim3Solver` (RANSAC) and `Sim3Result` |
| `colslam.config` | `read_settings` for YAML settings files and the `SlamConfig` dataclass |
| `colslam.run_control` | `StopController` (thread-safe stop/finish handshake) and `ViewerSettings` |
| `colslam.system_modes` | `SystemControl` (localization-mode, reset and tracking-state flags) and `ModeChange` |
| `colslam.tracking_state` | the `TrackingState` enum, `next_state` and the per-frame `FrameLog` |
| `colslam.trajectory` | `TrajectoryRecord`, `camera_in_world`, `frame_poses`, `format_kitti_line`, `write_kitti_trajectory` |

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Pose from 3D–2D correspondences

`solve_epnp` takes world points of shape `(n, 3)` and pixels of shape `(n, 2)`. It returns `(rotation, translation, error)`. The pose maps world points into the camera frame. `error` is the mean reprojection distance in pixels.

```python
import numpy as np
from colslam.epnp import CameraIntrinsics, solve_epnp

intrinsics = CameraIntrinsics(fu=500.0, fv=500.0, uc=320.0, vc=240.0)
rng = np.random.default_rng(0)
world = rng.uniform(-1.0, 1.0, size=(20, 3)) + [0.0, 0.0, 5.0]
image = np.column_stack((
    intrinsics.uc + intrinsics.fu * world[:, 0] / world[:, 2],
    intrinsics.vc + intrinsics.fv * world[:, 1] / world[:, 2],
))
rotation, translation, error = solve_epnp(world, image, intrinsics)
```

`PnPRansac` makes the same estimate robust to outliers. Each correspondence carries a squared level sigma, and a match counts as an inlier when its squared reprojection error is below `sigma2 * th2`. `keypoint_indices` and `total_matches` map the correspondences back onto a longer match vector. `rng` is a `random.Random`.

```python
import random
from colslam.pnp_ransac import PnPRansac

solver = PnPRansac(world, image, [1.0] * len(world), intrinsics, rng=random.Random(1))
solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
result = solver.find()          # or solver.iterate(5) for a few iterations at a time
if result.found:
    print(result.pose, result.n_inliers)
```

`result.pose` is a 4x4 float32 world-to-camera matrix, or `None`. `result.inliers` has one flag per match. `result.no_more` tells that the iteration budget is spent.

## Similarity between two point sets

`compute_sim3(points1, points2, fix_scale)` returns a `Sim3Transform` with `p1 = scale * rotation @ p2 + translation`. Its `t12` and `t21` properties give the 4x4 matrices in each direction.

`Sim3Solver` runs RANSAC over minimal samples of three. Its inputs are two matched sets of camera-frame points, per-point bounds on the squared reprojection error in each image, and the two 3x3 calibration matrices. `find()` and `iterate(n)` return a `Sim3Result`, whose `pose` is the camera-2-to-camera-1 matrix and whose `transform` is the `Sim3Transform`.

## Settings

`read_settings(path)` reads a YAML settings file into a dictionary keyed by dotted names such as `Camera.fx`. A leading `%YAML` directive is accepted, and `!!opencv-matrix` nodes become NumPy arrays. `SlamConfig.load(path)` and `SlamConfig.from_mapping(settings)` build the configuration from the camera, `ORBextractor`, `ThDepth`, `DepthMapFactor` and `Viewer` keys. Missing keys read as zero. `Camera.k3` joins `dist_coef` only when it is non-zero. `camera_matrix()` returns K as float32.

`ViewerSettings.from_mapping` reads `Camera.fps`, `Camera.width` and `Camera.height`. It falls back to 30 fps and 640x480.

## Run control and tracking bookkeeping

- `StopController`: `request_stop`, `stop`, `release`, `is_stopped`, `request_finish`, `check_finish`, `set_finish` and `is_finished`, all thread-safe. A new controller reports itself finished and stopped.
- `SystemControl`: `activate_localization_mode` and `deactivate_localization_mode` queue requests that `take_mode_change()` returns as a `ModeChange` and clears. `request_reset` and `take_reset` work the same way for resets. `set_tracking_state` and `tracking_state` hold the last tracking state.
- `FrameLog.record(relative_pose, reference, timestamp, lost)` appends one frame. A pose of `None` repeats the previous entry's pose, reference and timestamp.

## KITTI trajectories

`write_kitti_trajectory(path, records, origin_inverse)` writes one line of 12 numbers per record, with 9 decimals. The line holds the camera-to-world rotation rows, each followed by the camera centre coordinate. The records may be `TrajectoryRecord`s or the tuples a `FrameLog` yields.

A reference keyframe object needs the attributes `pose`, `bad`, `tcp` and `parent`. When a reference is `bad`, its pose is rebuilt by walking up `parent` links. `origin_inverse` is the inverse pose of the first keyframe, so that it sits at the origin.

## What the package does not do

colslam holds no complete SLAM system. It has:

- no feature extraction and no frame or keyframe objects;
- no map, local mapping, loop closing or bundle adjustment;
- no tracking loop that drives these pieces from images;
- no viewer window;
- no command-line program.

The caller supplies the correspondences, keyframes and poses these functions work on.