import numpy as np
import pytest

from bagraph.bal_problem import BALProblem
from bagraph.bundle_adjustment import (
    SnavelyReprojectionError,
    SolverOptions,
    main,
    reprojection_residuals,
    solve_bundle,
    solve_problem,
    solver_options_from_params,
)
from bagraph.bundle_params import Backend, BundleParams
from bagraph.projection import project_with_distortion

_CAMERAS = np.array(
    [
        [0.01, 0.02, -0.01, 0.1, -0.2, -10.0, 500.0, 1e-3, 1e-5],
        [-0.02, 0.01, 0.03, 1.0, 0.3, -11.0, 480.0, 1e-3, 1e-5],
        [0.0, -0.03, 0.02, -0.5, 0.4, -9.5, 520.0, 1e-3, 1e-5],
    ]
)

_POINTS = np.array(
    [
        [-1.0, -1.0, 0.5],
        [1.0, -1.0, -0.5],
        [-1.0, 1.0, -0.3],
        [1.0, 1.0, 0.2],
        [0.0, 0.0, 1.0],
        [0.5, -0.5, -1.0],
        [-0.5, 0.5, 0.8],
        [0.2, 0.7, -0.6],
    ]
)


def _synthetic_problem(point_noise: float = 0.0) -> BALProblem:
    pairs = [(c, p) for c in range(len(_CAMERAS)) for p in range(len(_POINTS))]
    camera_index = np.array([c for c, _ in pairs])
    point_index = np.array([p for _, p in pairs])
    observations = np.array(
        [project_with_distortion(_CAMERAS[c], _POINTS[p]) for c, p in pairs]
    )
    points = _POINTS.copy()
    if point_noise:
        points += np.random.default_rng(0).normal(scale=point_noise, size=points.shape)
    parameters = np.concatenate([_CAMERAS.ravel(), points.ravel()])
    return BALProblem(
        num_cameras=len(_CAMERAS),
        num_points=len(_POINTS),
        camera_index=camera_index,
        point_index=point_index,
        observations=observations,
        parameters=parameters,
    )


def _write_bal(path, problem: BALProblem) -> None:
    lines = [f"{problem.num_cameras} {problem.num_points} {problem.num_observations}"]
    for c, p, (x, y) in zip(problem.camera_index, problem.point_index, problem.observations):
        lines.append(f"{c} {p} {x!r} {y!r}")
    lines.extend(repr(float(v)) for v in problem.parameters)
    path.write_text("\n".join(lines) + "\n")


def _rms(values: np.ndarray) -> float:
    return float(np.sqrt(np.mean(values * values)))


def test_residual_is_prediction_minus_observation():
    camera = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0]
    error = SnavelyReprojectionError(0.0, 0.0)
    np.testing.assert_allclose(error(camera, [1.0, 2.0, -1.0]), [1.0, 2.0])


def test_residual_vanishes_at_projection():
    x, y = project_with_distortion(_CAMERAS[1], _POINTS[3])
    error = SnavelyReprojectionError(x, y)
    np.testing.assert_allclose(error(_CAMERAS[1], _POINTS[3]), [0.0, 0.0], atol=1e-12)


def test_residual_rejects_short_camera():
    with pytest.raises(ValueError):
        SnavelyReprojectionError(0.0, 0.0)([0.0] * 6, [1.0, 2.0, 3.0])


def test_residuals_match_per_observation():
    problem = _synthetic_problem(point_noise=0.05)
    stacked = reprojection_residuals(problem)
    expected = np.concatenate(
        [
            SnavelyReprojectionError(*problem.observations[i])(
                problem.camera_for_observation(i), problem.point_for_observation(i)
            )
            for i in range(problem.num_observations)
        ]
    )
    assert stacked.shape == (2 * problem.num_observations,)
    np.testing.assert_allclose(stacked, expected, rtol=1e-10, atol=1e-10)


def test_residuals_match_near_zero_rotation():
    problem = _synthetic_problem(point_noise=0.05)
    problem.cameras()[:, :3] = 1e-9
    stacked = reprojection_residuals(problem).reshape(-1, 2)
    for i in range(problem.num_observations):
        expected = SnavelyReprojectionError(*problem.observations[i])(
            problem.camera_for_observation(i), problem.point_for_observation(i)
        )
        np.testing.assert_allclose(stacked[i], expected, rtol=1e-10, atol=1e-10)


def test_residuals_zero_for_exact_problem():
    assert _rms(reprojection_residuals(_synthetic_problem())) < 1e-9


def test_default_options():
    options = solver_options_from_params(BundleParams())
    assert options.method == "trf"
    assert options.tr_solver == "exact"
    assert options.loss == "linear"
    assert options.uses_sparse_jacobian is False
    assert options.max_num_iterations == 10
    assert options.gradient_tolerance == 1e-16
    assert options.function_tolerance == 1e-16


def test_dogleg_sparse_robust_options():
    params = BundleParams(
        trust_region_strategy="dogleg", linear_solver="sparse_schur", robustify=True
    )
    options = solver_options_from_params(params)
    assert options.method == "dogbox"
    assert options.tr_solver == "lsmr"
    assert options.uses_sparse_jacobian is True
    assert options.loss == "huber"


@pytest.mark.parametrize("backend", [Backend.CERES, Backend.G2O])
def test_unknown_strategy_rejected(backend):
    params = BundleParams(trust_region_strategy="gradient_descent", backend=backend)
    with pytest.raises(ValueError):
        solver_options_from_params(params)


def test_g2o_rejects_sparse_normal_cholesky():
    params = BundleParams(linear_solver="sparse_normal_cholesky", backend=Backend.G2O)
    with pytest.raises(ValueError):
        solver_options_from_params(params)


def test_ceres_accepts_sparse_normal_cholesky():
    params = BundleParams(linear_solver="sparse_normal_cholesky")
    assert solver_options_from_params(params).linear_solver == "sparse_normal_cholesky"


def test_ceres_names_are_case_insensitive():
    options = solver_options_from_params(BundleParams(trust_region_strategy="DOGLEG"))
    assert options.trust_region_strategy == "dogleg"
    with pytest.raises(ValueError):
        solver_options_from_params(
            BundleParams(trust_region_strategy="DOGLEG", backend=Backend.G2O)
        )


def test_unknown_library_rejected():
    with pytest.raises(ValueError):
        solver_options_from_params(BundleParams(dense_linear_algebra_library="mkl"))
    with pytest.raises(ValueError):
        solver_options_from_params(BundleParams(sparse_linear_algebra_library="pardiso"))


def test_negative_iterations_rejected():
    with pytest.raises(ValueError):
        solver_options_from_params(BundleParams(num_iterations=-1))


@pytest.mark.parametrize(
    "strategy,solver,robust",
    [
        ("levenberg_marquardt", "dense_schur", False),
        ("levenberg_marquardt", "sparse_schur", True),
        ("dogleg", "dense_schur", True),
        ("dogleg", "sparse_schur", False),
    ],
)
def test_solve_bundle_reduces_error(strategy, solver, robust):
    problem = _synthetic_problem(point_noise=0.05)
    initial = _rms(reprojection_residuals(problem))
    params = BundleParams(
        trust_region_strategy=strategy,
        linear_solver=solver,
        robustify=robust,
        num_iterations=50,
    )
    solve_bundle(problem, params)
    final = _rms(reprojection_residuals(problem))
    assert final < 0.1 * initial


def test_solve_bundle_writes_result_in_place():
    problem = _synthetic_problem(point_noise=0.05)
    before = problem.parameters.copy()
    result = solve_bundle(problem, BundleParams(num_iterations=20))
    np.testing.assert_array_equal(problem.parameters, result.x)
    assert not np.array_equal(before, problem.parameters)


def test_solve_bundle_accepts_solver_options():
    problem = _synthetic_problem(point_noise=0.05)
    initial = _rms(reprojection_residuals(problem))
    options = SolverOptions("levenberg_marquardt", "dense_schur", max_num_iterations=50)
    solve_bundle(problem, options)
    assert _rms(reprojection_residuals(problem)) < 0.1 * initial


def test_quaternion_problem_rejected():
    problem = _synthetic_problem()
    problem.use_quaternions = True
    with pytest.raises(ValueError):
        solve_bundle(problem, BundleParams())


def test_no_observations_rejected():
    problem = BALProblem(
        num_cameras=1,
        num_points=1,
        camera_index=np.empty(0, dtype=int),
        point_index=np.empty(0, dtype=int),
        observations=np.empty((0, 2)),
        parameters=np.concatenate([_CAMERAS[0], _POINTS[0]]),
    )
    with pytest.raises(ValueError):
        solve_bundle(problem, BundleParams())


def test_out_of_range_index_rejected():
    problem = _synthetic_problem()
    problem.point_index[0] = problem.num_points
    with pytest.raises(ValueError):
        reprojection_residuals(problem)


def test_solve_problem_writes_ply(tmp_path):
    path = tmp_path / "problem.txt"
    _write_bal(path, _synthetic_problem())
    initial_ply = tmp_path / "initial.ply"
    final_ply = tmp_path / "final.ply"
    params = BundleParams(
        input=str(path), initial_ply=str(initial_ply), final_ply=str(final_ply)
    )
    problem = solve_problem(path, params)
    assert _rms(reprojection_residuals(problem)) < 1e-6
    for ply in (initial_ply, final_ply):
        lines = ply.read_text().splitlines()
        assert lines[0] == "ply"
        assert len(lines) == 10 + problem.num_cameras + problem.num_points


def test_main_without_input(capsys):
    assert main(["bundle_adjuster"]) == 1
    assert "Usage: bundle_adjuster -input <path for dataset>" in capsys.readouterr().out


def test_main_help(capsys):
    assert main(["bundle_adjuster", "-help"]) == 0
    assert "Program Options:" in capsys.readouterr().out


def test_main_g2o_rejects_ceres_only_option(capsys):
    assert main(["g2o_bundle", "-ordering", "user", "-input", "x"]) == 1
    assert "Unknown Option 'ordering'" in capsys.readouterr().err


def test_main_missing_file(tmp_path, capsys):
    missing = tmp_path / "missing.txt"
    assert main(["bundle_adjuster", "-input", str(missing), "-initial_ply", ""]) == 1
    assert "Error" in capsys.readouterr().err


def test_main_runs_problem(tmp_path):
    path = tmp_path / "problem.txt"
    _write_bal(path, _synthetic_problem())
    final_ply = tmp_path / "final.ply"
    status = main(
        [
            "g2o_bundle",
            "-input",
            str(path),
            "-initial_ply",
            str(tmp_path / "initial.ply"),
            "-final_ply",
            str(final_ply),
        ]
    )
    assert status == 0
    assert final_ply.read_text().startswith("ply\n")