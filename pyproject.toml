[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "protonsim"
version = "0.1.0"
description = "Electrostatic field solver and proton trajectory simulator for toothed dielectric accelerator structures"
requires-python = ">=3.10"
keywords = ["poisson", "sor", "electrostatics", "proton", "trajectory", "runge-kutta", "simulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Physics",
]
dependencies = [
    "numpy",
    "matplotlib",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
protonsim-solve = "protonsim.solver:main"
protonsim-simulate = "protonsim.simulator:main"
protonsim-plot = "protonsim.plots:main"

[tool.hatch.build.targets.wheel]
packages = ["protonsim"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
