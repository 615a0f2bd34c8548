[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bagraph"
version = "0.1.0"
description = "Bundle adjustment of BAL datasets and SE(3) pose-graph optimisation with NumPy and SciPy"
requires-python = ">=3.10"
keywords = [
    "bundle adjustment",
    "pose graph",
    "slam",
    "se3",
    "lie algebra",
    "least squares",
    "computer vision",
    "g2o",
    "bal",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
bagraph-bundle = "bagraph.bundle_adjustment:main"
bagraph-pose-graph = "bagraph.pose_graph:main"

[tool.hatch.build.targets.wheel]
packages = ["bagraph"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
