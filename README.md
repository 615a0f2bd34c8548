# bagraph

Two classic problems from visual SLAM, solved with NumPy and SciPy:

* **Bundle adjustment** of datasets in the BAL ("Bundle Adjustment in the Large") text format. Each camera
  has nine parameters: an angle-axis rotation, a translation, a focal length and two radial distortion
  coefficients. Points are plain 3D positions. Solving uses `scipy.optimize.least_squares`.
* **Pose-graph optimisation** of `.g2o` files made of `VERTEX_SE3:QUAT` and `EDGE_SE3:QUAT` records. Poses
  are updated on the Lie algebra of SE(3) with a Levenberg-Marquardt loop over a sparse normal system.

## Installation

```
pip install .
```

Add the `test` extra to get pytest for running the test suite:

```
pip install ".[test]"
pytest
```

## Command line

### Bundle adjustment

```
bagraph-bundle -input problem-16-22106-pre.txt
```

Options take one or more dashes followed by the option name. A value follows every option except the
boolean `-robustify`, which is switched on by naming it. An unknown option or a missing value is an error
(exit status 1); `-help` or `-h` prints every option with its description and default.

| option | default | meaning |
| --- | --- | --- |
| `-input <string>` | (none) | BAL file to process |
| `-trust_region_strategy <string>` | `levenberg_marquardt` | `levenberg_marquardt` (SciPy `trf`) or `dogleg` (SciPy `dogbox`) |
| `-linear_solver <string>` | `dense_schur` | `dense_qr`, `dense_normal_cholesky`, `dense_schur`, `sparse_normal_cholesky`, `sparse_schur`, `iterative_schur` or `cgnr` |
| `-sparse_linear_algebra_library <string>` | `suite_sparse` | checked for a known name, otherwise unused |
| `-dense_linear_algebra_library <string>` | `eigen` | `eigen` or `lapack`; checked, otherwise unused |
| `-ordering <string>` | `automatic` | accepted and stored |
| `-num_threads <int>` | `1` | accepted and stored |
| `-robustify` | off | use a Huber loss with scale 1.0 |
| `-num_iterations <int>` | `10` | limit on the solver's function evaluations |
| `-rotation_sigma <double>` | `0` | std. deviation of the camera rotation perturbation |
| `-translation_sigma <double>` | `0` | std. deviation of the camera translation perturbation |
| `-point_sigma <double>` | `0` | std. deviation of the point perturbation |
| `-random_seed <int>` | `38401` | seed for the perturbation noise |
| `-initial_ply <string>` | `initial.ply` | PLY export of the data as read; empty to skip |
| `-final_ply <string>` | `final.ply` | PLY export of the data after optimisation; empty to skip |

The dense linear solvers work on a dense Jacobian with an exact trust-region solve; the others give SciPy
the Jacobian's sparsity pattern and use LSMR.

After loading, the problem is normalised so that the points are centred on their median and their median
absolute deviation is 100, then perturbed with the noise levels above. The command prints the solver's
message, the number of function evaluations and the RMS reprojection error before and after. The PLY files
show camera centres in green and points in white and can be opened in MeshLab or CloudCompare.

When `main` in `bagraph.bundle_adjustment` is called with a program name containing `g2o`, the smaller g2o
option set is used instead: only `dense_schur` and `sparse_schur` are accepted as linear solvers, the four
options marked above as checked or stored are unknown, and `-num_iterations` defaults to 20.

### Pose graph

```
bagraph-pose-graph sphere.g2o
```

The graph is read, the vertex with id 0 is held fixed, the other poses are optimised for up to 30 iterations
(each printed with its chi2 and damping), and the result is written to `result_lie.g2o` in the current
directory, using the same `VERTEX_SE3:QUAT` / `EDGE_SE3:QUAT` records so that graph viewers can show it.

## Library use

### BAL problems

```python
from bagraph.bal_problem import BALProblem
from bagraph.sampling import RandomSource

problem = BALProblem.from_file("problem-16-22106-pre.txt", False)
problem.normalize()
problem.perturb(0.1, 0.5, 0.5, RandomSource(38401))
problem.write_to_ply_file("perturbed.ply")
problem.write_to_file("perturbed.txt")
```

`cameras()` and `points()` return writable views of the parameter blocks; `camera_for_observation(i)` and
`point_for_observation(i)` return the blocks an observation refers to. Passing `True` to `from_file` stores
camera rotations as quaternions; `write_to_file` always writes angle-axis rotations. A malformed file raises
`BALFormatError`.

Solving in place:

```python
from bagraph.bundle_adjustment import reprojection_residuals, solve_bundle
from bagraph.bundle_params import BundleParams

result = solve_bundle(problem, BundleParams(num_iterations=50, robustify=True))
print(abs(reprojection_residuals(problem)).max())
```

`solver_options_from_params` validates the settings and returns a `SolverOptions`; `solve_problem(filename,
params)` runs the whole load, normalise, perturb, solve and export sequence of the command.
`SnavelyReprojectionError(x, y)` is the per-observation residual: called with a camera and a point it returns
the predicted minus the observed image position.

The geometry helpers are usable on their own:

```python
from bagraph.rotation import angle_axis_rotate_point, angle_axis_to_quaternion
from bagraph.projection import project_with_distortion

quaternion = angle_axis_to_quaternion([0.0, 0.0, 0.1])   # (w, x, y, z)
rotated = angle_axis_rotate_point([0.0, 0.0, 0.1], [1.0, 0.0, 0.0])
pixel = project_with_distortion(camera, point)  # camera: 9 values, point: 3 values
```

### Command-line options

`bagraph.command_args.CommandArgs` is the option parser used by the bundle command. `param(name, default,
description)` declares an option whose type follows its default, `param_left_over` declares positional
arguments, `parse_args(argv)` raises `HelpRequested` or `CommandArgsError`, and `args[name]` gives a value.

### Pose graphs

```python
from bagraph.pose_graph import PoseGraph

graph = PoseGraph.load("sphere.g2o")
print("before:", graph.total_error())
graph.optimize(30, True)
print("after:", graph.total_error())
graph.save("result.g2o")
```

`bagraph.se3` holds the `SE3` type used by the graph, with `exp`, `log`, `inverse`, `adjoint`,
`unit_quaternion` and composition through the `@` operator (`a @ b` for two transforms, `a @ point` to
transform a point), along with `hat`, `so3_exp`, `so3_log` and `jr_inv`.

## What it does not do

* Bundle adjustment works only on cameras in angle-axis form; problems loaded with quaternion cameras can be
  normalised, perturbed and written out but not solved.
* The options for sparse and dense algebra libraries, ordering and threads do not change how SciPy solves.
* Pose graphs have a single optimiser, Levenberg-Marquardt on the Lie algebra, with a fixed output file name
  for the command; there is no viewer.