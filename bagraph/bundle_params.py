"""Command-line settings for the bundle adjustment programs."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Sequence

from .command_args import CommandArgs


class Backend(Enum):
    """Which optimiser the settings are meant for."""

    CERES = "ceres"
    G2O = "g2o"


_CERES_ONLY = frozenset(
    {"sparse_linear_algebra_library", "dense_linear_algebra_library", "ordering", "num_threads"}
)

_DESCRIPTIONS = {
    "input": "file which will be processed",
    "trust_region_strategy": "Options are: levenberg_marquardt, dogleg.",
    "sparse_linear_algebra_library": "Options are: suite_sparse and cx_sparse.",
    "dense_linear_algebra_library": "Options are: eigen and lapack.",
    "ordering": "Options are: automatic, user.",
    "robustify": "Use a robust loss function",
    "num_threads": "Number of threads.",
    "num_iterations": "Number of iterations.",
    "rotation_sigma": "Standard deviation of camera rotation perturbation.",
    "translation_sigma": "translation perturbation.",
    "point_sigma": "Standard deviation of the point perturbation.",
    "random_seed": "Random seed used to set the state ",
    "initial_ply": "Export the BAL file data as a PLY file.",
    "final_ply": "Export the refined BAL file data as a PLY",
}

_LINEAR_SOLVER_DESCRIPTIONS = {
    Backend.CERES: "Options are: sparse_schur, dense_schur, sparse_normal_cholesky",
    Backend.G2O: "Options are: sparse_schur, dense_schur",
}

_DEFAULT_ITERATIONS = {Backend.CERES: 10, Backend.G2O: 20}


@dataclass
class BundleParams:
    """Options for loading, perturbing and solving a BAL problem."""

    input: str = ""
    trust_region_strategy: str = "levenberg_marquardt"
    linear_solver: str = "dense_schur"
    sparse_linear_algebra_library: str = "suite_sparse"
    dense_linear_algebra_library: str = "eigen"
    ordering: str = "automatic"
    robustify: bool = False
    num_threads: int = 1
    num_iterations: int = 10
    random_seed: int = 38401
    rotation_sigma: float = 0.0
    translation_sigma: float = 0.0
    point_sigma: float = 0.0
    initial_ply: str = "initial.ply"
    final_ply: str = "final.ply"
    backend: Backend = Backend.CERES
    args: CommandArgs = field(default_factory=CommandArgs, repr=False, compare=False)

    @classmethod
    def from_args(
        cls, argv: Sequence[str] | None = None, backend: Backend = Backend.CERES
    ) -> "BundleParams":
        """Build settings from a command line whose first element is the program name.

        Options that the chosen backend does not offer are unknown on the
        command line. Errors from the parser (CommandArgsError,
        HelpRequested) propagate.
        """
        defaults = cls(num_iterations=_DEFAULT_ITERATIONS[backend], backend=backend)
        if backend is Backend.G2O:
            # These settings are not offered for g2o and stay empty.
            defaults.sparse_linear_algebra_library = ""
            defaults.dense_linear_algebra_library = ""

        args = CommandArgs()
        option_names = []
        for spec in fields(cls):
            if spec.name in ("backend", "args"):
                continue
            if backend is Backend.G2O and spec.name in _CERES_ONLY:
                continue
            if spec.name == "linear_solver":
                description = _LINEAR_SOLVER_DESCRIPTIONS[backend]
            else:
                description = _DESCRIPTIONS[spec.name]
            args.param(spec.name, getattr(defaults, spec.name), description)
            option_names.append(spec.name)

        args.parse_args(argv if argv is not None else ["bundle_adjuster"])

        values = {name: args[name] for name in option_names}
        result = cls(**{**_settings(defaults), **values})
        result.args = args
        return result


def _settings(params: BundleParams) -> dict:
    return {
        spec.name: getattr(params, spec.name)
        for spec in fields(params)
        if spec.name != "args"
    }