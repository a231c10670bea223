[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusterops"
version = "0.1.0"
description = "Upgrade reconciliation, built-in role data, UI location and object storage helpers for a cluster operator"
requires-python = ">=3.10"
dependencies = []
keywords = ["cluster", "upgrade", "operator", "controller", "rbac", "object-storage", "semver"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["clusterops"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
