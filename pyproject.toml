[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamopt"
version = "0.1.0"
description = "SE(3) pose graph optimisation and bundle-adjustment problem tools for visual SLAM experiments"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
]
keywords = [
    "slam",
    "bundle adjustment",
    "pose graph",
    "lie algebra",
    "se3",
    "least squares",
    "g2o",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
    "Topic :: Scientific/Engineering :: Image Recognition",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamopt-pose-graph-se3 = "slamopt.pose_graph_cli:main_se3"
slamopt-pose-graph-lie = "slamopt.pose_graph_cli:main_lie_algebra"
slamopt-pose-graph-gtsam = "slamopt.pose_graph_cli:main_gtsam"

[tool.hatch.build.targets.wheel]
packages = ["slamopt"]

[tool.pytest.ini_options]
addopts = "-ra"
