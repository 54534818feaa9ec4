# slamopt

Tools for two classic visual SLAM back-end problems, built on NumPy and SciPy:

- **Pose graph optimisation** on `.g2o` files made of `VERTEX_SE3:QUAT` and
  `EDGE_SE3:QUAT` records. Poses live on SE(3), errors are measured in the
  Lie algebra and the graph is refined with Levenberg-Marquardt.
- **Bundle-adjustment problems** in the BAL ("Bundle Adjustment in the
  Large") text format. You can load, normalise, perturb and save them, and
  evaluate the reprojection residual of Snavely-style cameras (angle-axis
  rotation, translation, focal length and two radial distortion terms).

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Command-line tools

Each command takes the path of a single `.g2o` file. The optimised graph is
written in the same `.g2o` format into the current directory, so any g2o
viewer can display it.

```
slamopt-pose-graph-se3 sphere.g2o
slamopt-pose-graph-lie sphere.g2o
slamopt-pose-graph-gtsam sphere.g2o
```

- `slamopt-pose-graph-se3` holds vertex 0 fixed, runs up to 30 iterations
  and writes `result.g2o`.
- `slamopt-pose-graph-lie` does the same and writes `result_lie.g2o`.
- `slamopt-pose-graph-gtsam` holds the vertex with the smallest id fixed,
  runs up to 20 iterations, prints the error before and after (half the sum
  of `e^T Omega e` over the edges) and writes `result_gtsam.g2o`.

Each command prints a progress line per iteration. If the wrong number of
arguments is given, a usage line is printed. If the file cannot be opened,
the command says so. In both cases it exits with status 1.

## Library use

### Pose graphs

```python
from slamopt.pose_graph import PoseGraph

graph = PoseGraph.load("sphere.g2o")
print("initial error:", graph.error())
history = graph.optimize(30, True)
print("final error:", graph.error())
with open("optimised.g2o", "w") as out:
    graph.write(out)
```

`PoseGraph.read` and `PoseGraph.load` fix vertex 0. They skip tokens that
are neither tag, and they raise `ValueError` for malformed input or for an
edge that refers to an unknown vertex.

`optimize` updates poses by left multiplication and returns the total error
after each accepted iteration. It stops early when no step improves the
error.

The information matrices are ordered translation first.
`g2o_to_gtsam_information` and `gtsam_to_g2o_information` swap the two
diagonal blocks to convert to and from a rotation-first ordering.

`jr_inv` gives the approximate inverse right Jacobian used for the edge
Jacobians.

### SO(3) and SE(3)

`slamopt.se3` provides `SO3` and `SE3` with `exp`, `log`, `inverse`,
`adjoint`, and composition through the `@` operator. SE(3) tangent vectors
are ordered `(upsilon, omega)`. Quaternions are scalar first.

```python
import numpy as np
from slamopt.se3 import SE3

a = SE3.exp([0.1, 0.0, 0.0, 0.0, 0.0, 0.2])
b = SE3.exp([0.0, 0.3, 0.0, 0.1, 0.0, 0.0])
relative = (a.inverse() @ b).log()
moved = a @ np.array([1.0, 2.0, 3.0])
```

### BAL problems

```python
from slamopt.bal_problem import BALProblem
from slamopt.sampling import NormalSampler

problem = BALProblem("problem-16-22106-pre.txt")
problem.write_to_ply_file("initial.ply")
problem.normalize()
problem.perturb(0.0, 0.0, 0.1, NormalSampler(38401))
problem.write_to_file("perturbed.txt")
```

- `BALProblem` keeps all parameters in one flat array. `cameras` and
  `points` are writable views onto it.
- With `use_quaternions=True`, camera rotations are stored as quaternions.
- Malformed files raise `BALFormatError`.
- `normalize` centres the points on their median and scales them so that
  the median L1 deviation is 100. Camera centres follow the same transform.
- `write_to_ply_file` exports camera centres and points as an ASCII PLY
  point cloud.

### Building blocks

- `slamopt.rotation` — `angle_axis_to_quaternion`,
  `quaternion_to_angle_axis`, `angle_axis_rotate_point`, `dot_product` and
  `cross_product`.
- `slamopt.projection` — `cam_projection_with_distortion` and the
  `SnavelyReprojectionError` residual (`prediction - observation`).
- `slamopt.sampling` — `NormalSampler`, a seeded polar-method Gaussian
  generator for reproducible perturbations.

## What this package does not do

There is no bundle-adjustment solver and no bundle-adjustment command. BAL
problems can be loaded, normalised, perturbed, evaluated and written out, but
refining cameras and points is left to you. For example, you can feed
`SnavelyReprojectionError` residuals to a least-squares routine of your
choice.

There is also no general command-line option parser. The only commands are
the three pose-graph tools above.