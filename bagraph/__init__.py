"""Bundle adjustment on BAL datasets and SE(3) pose-graph optimisation."""

__version__ = "0.1.0"

__all__ = [
    "rotation",
    "sampling",
    "projection",
    "bal_problem",
    "command_args",
    "bundle_params",
    "bundle_adjustment",
    "se3",
    "pose_graph",
]