"""Bundle adjustment of BAL problems by nonlinear least squares.

Each observation contributes a two-dimensional reprojection residual that
depends on one camera (9 parameters) and one point (3 parameters). The
problem is solved in place: the optimised values are written back into the
problem's parameter array.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Sequence

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import coo_matrix

from .bal_problem import BALProblem
from .bundle_params import Backend, BundleParams
from .command_args import CommandArgsError, HelpRequested
from .projection import project_with_distortion
from .sampling import RandomSource

_EPS = float(np.finfo(float).eps)
_CAMERA_SIZE = 9
_POINT_SIZE = 3

_STRATEGIES = frozenset({"levenberg_marquardt", "dogleg"})
_DENSE_SOLVERS = frozenset({"dense_qr", "dense_normal_cholesky", "dense_schur"})
_CERES_SOLVERS = _DENSE_SOLVERS | {
    "sparse_normal_cholesky",
    "sparse_schur",
    "iterative_schur",
    "cgnr",
}
_G2O_SOLVERS = frozenset({"dense_schur", "sparse_schur"})
_SPARSE_LIBRARIES = frozenset(
    {"suite_sparse", "cx_sparse", "eigen_sparse", "accelerate_sparse", "no_sparse"}
)
_DENSE_LIBRARIES = frozenset({"eigen", "lapack"})

_USAGE = "Usage: bundle_adjuster -input <path for dataset>"


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between an observed image point and its predicted projection."""

    observed_x: float
    observed_y: float

    def __call__(self, camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
        """Return ``prediction - observation`` for one camera and point."""
        prediction = project_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])


@dataclass
class SolverOptions:
    """Validated solver settings derived from :class:`BundleParams`."""

    trust_region_strategy: str
    linear_solver: str
    max_num_iterations: int
    robustify: bool = False
    ordering: str = "automatic"
    num_threads: int = 1
    gradient_tolerance: float = 1e-16
    function_tolerance: float = 1e-16

    @property
    def method(self) -> str:
        """The trust-region method used by the least-squares solver."""
        return "trf" if self.trust_region_strategy == "levenberg_marquardt" else "dogbox"

    @property
    def uses_sparse_jacobian(self) -> bool:
        """Whether the Jacobian is handled as a sparse matrix."""
        return self.linear_solver not in _DENSE_SOLVERS

    @property
    def tr_solver(self) -> str:
        """The solver for the trust-region subproblems."""
        return "lsmr" if self.uses_sparse_jacobian else "exact"

    @property
    def loss(self) -> str:
        """The loss applied to squared residuals."""
        return "huber" if self.robustify else "linear"


def solver_options_from_params(params: BundleParams) -> SolverOptions:
    """Check the solver settings in ``params`` and return them as options.

    Raises ValueError for a strategy, linear solver or algebra library that
    the chosen backend does not offer, and for a negative iteration count.
    """
    strategy = params.trust_region_strategy
    solver = params.linear_solver
    if params.backend is Backend.CERES:
        strategy = strategy.lower()
        solver = solver.lower()
        if strategy not in _STRATEGIES:
            raise ValueError(f"unknown trust region strategy: {params.trust_region_strategy!r}")
        if solver not in _CERES_SOLVERS:
            raise ValueError(f"unknown linear solver: {params.linear_solver!r}")
        if params.sparse_linear_algebra_library.lower() not in _SPARSE_LIBRARIES:
            raise ValueError(
                "unknown sparse linear algebra library: "
                f"{params.sparse_linear_algebra_library!r}"
            )
        if params.dense_linear_algebra_library.lower() not in _DENSE_LIBRARIES:
            raise ValueError(
                "unknown dense linear algebra library: "
                f"{params.dense_linear_algebra_library!r}"
            )
    else:
        if strategy not in _STRATEGIES:
            raise ValueError("Please check your trust_region_strategy parameter again..")
        if solver not in _G2O_SOLVERS:
            raise ValueError(f"unsupported linear solver: {params.linear_solver!r}")
    if params.num_iterations < 0:
        raise ValueError("the number of iterations must not be negative")
    return SolverOptions(
        trust_region_strategy=strategy,
        linear_solver=solver,
        max_num_iterations=params.num_iterations,
        robustify=params.robustify,
        ordering=params.ordering,
        num_threads=params.num_threads,
    )


def _check_problem(problem: BALProblem) -> None:
    if problem.use_quaternions:
        raise ValueError("cameras must be in angle-axis form")
    if problem.num_observations:
        if problem.camera_index.min() < 0 or problem.camera_index.max() >= problem.num_cameras:
            raise ValueError("camera index out of range")
        if problem.point_index.min() < 0 or problem.point_index.max() >= problem.num_points:
            raise ValueError("point index out of range")


def _project_many(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    angle_axis = cameras[:, :3]
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    large = theta2 > _EPS
    theta = np.sqrt(np.where(large, theta2, 1.0))
    w = angle_axis / theta[:, None]
    cos_theta = np.cos(theta)[:, None]
    sin_theta = np.sin(theta)[:, None]
    tmp = np.einsum("ij,ij->i", w, points)[:, None] * (1.0 - cos_theta)
    rodrigues = points * cos_theta + np.cross(w, points) * sin_theta + w * tmp
    first_order = points + np.cross(angle_axis, points)
    p = np.where(large[:, None], rodrigues, first_order) + cameras[:, 3:6]

    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    return np.column_stack([scale * xp, scale * yp])


def _residuals(parameters: np.ndarray, problem: BALProblem) -> np.ndarray:
    split = _CAMERA_SIZE * problem.num_cameras
    cameras = parameters[:split].reshape(problem.num_cameras, _CAMERA_SIZE)
    points = parameters[split:].reshape(problem.num_points, _POINT_SIZE)
    predictions = _project_many(cameras[problem.camera_index], points[problem.point_index])
    return (predictions - problem.observations).ravel()


def _jacobian_sparsity(problem: BALProblem) -> coo_matrix:
    count = problem.num_observations
    camera_cols = problem.camera_index[:, None] * _CAMERA_SIZE + np.arange(_CAMERA_SIZE)
    point_cols = (
        _CAMERA_SIZE * problem.num_cameras
        + problem.point_index[:, None] * _POINT_SIZE
        + np.arange(_POINT_SIZE)
    )
    cols = np.repeat(np.hstack([camera_cols, point_cols]), 2, axis=0)
    rows = np.repeat(np.arange(2 * count), _CAMERA_SIZE + _POINT_SIZE)
    data = np.ones(rows.size)
    return coo_matrix(
        (data, (rows, cols.ravel())), shape=(2 * count, problem.num_parameters)
    )


def reprojection_residuals(problem: BALProblem) -> np.ndarray:
    """Return the stacked ``(x, y)`` residuals of every observation."""
    _check_problem(problem)
    return _residuals(problem.parameters, problem)


def solve_bundle(problem: BALProblem, params: BundleParams | SolverOptions) -> OptimizeResult:
    """Minimise the reprojection error, updating ``problem`` in place."""
    options = params if isinstance(params, SolverOptions) else solver_options_from_params(params)
    _check_problem(problem)
    if problem.num_observations == 0:
        raise ValueError("the problem has no observations")

    result = least_squares(
        _residuals,
        problem.parameters.copy(),
        args=(problem,),
        method=options.method,
        loss=options.loss,
        f_scale=1.0,
        ftol=max(options.function_tolerance, _EPS),
        gtol=max(options.gradient_tolerance, _EPS),
        max_nfev=max(options.max_num_iterations, 1),
        tr_solver=options.tr_solver,
        jac_sparsity=_jacobian_sparsity(problem) if options.uses_sparse_jacobian else None,
    )
    problem.parameters[:] = result.x
    return result


def _rms(residuals: np.ndarray) -> float:
    return float(np.sqrt(np.mean(residuals * residuals))) if residuals.size else 0.0


def solve_problem(filename: str | PathLike, params: BundleParams) -> BALProblem:
    """Load, normalise, perturb and solve a BAL file, writing PLY snapshots."""
    problem = BALProblem.from_file(filename)

    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and "
        f"{problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observatoins. ")

    if params.initial_ply:
        problem.write_to_ply_file(params.initial_ply)

    print("beginning problem...")
    rng = RandomSource(params.random_seed)
    problem.normalize()
    problem.perturb(
        params.rotation_sigma, params.translation_sigma, params.point_sigma, rng
    )
    print("Normalization complete...")

    initial = _rms(reprojection_residuals(problem))
    result = solve_bundle(problem, params)
    final = _rms(reprojection_residuals(problem))
    print(result.message)
    print(f"Function evaluations: {result.nfev}")
    print(f"Initial RMS reprojection error: {initial:.6e}")
    print(f"Final RMS reprojection error: {final:.6e}")

    if params.final_ply:
        problem.write_to_ply_file(params.final_ply)
    return problem


def main(argv: Sequence[str] | None = None) -> int:
    """Run bundle adjustment from the command line; return the exit status.

    A program name containing ``g2o`` selects the g2o option set.
    """
    args = list(sys.argv if argv is None else argv)
    prog = args[0] if args else "bundle_adjuster"
    backend = Backend.G2O if "g2o" in Path(prog).name.lower() else Backend.CERES

    try:
        params = BundleParams.from_args(args or [prog], backend)
    except HelpRequested as request:
        print(request.text, end="")
        return 0
    except CommandArgsError as error:
        print(f"Error: {error}", file=sys.stderr)
        if error.usage:
            print(error.usage, file=sys.stderr, end="")
        return 1

    if backend is Backend.CERES:
        print(params.input)
    if not params.input:
        print(_USAGE)
        return 1

    try:
        solve_problem(params.input, params)
    except (OSError, ValueError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    return 0