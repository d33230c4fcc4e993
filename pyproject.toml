[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "colslam"
version = "0.1.0"
description = "EPnP and Sim3 pose solvers with RANSAC, settings loading and tracking bookkeeping for visual SLAM"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pyyaml",
]
keywords = ["slam", "pnp", "epnp", "sim3", "ransac", "computer-vision", "trajectory", "kitti"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["colslam"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
