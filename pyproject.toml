[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "drcontrol"
version = "0.1.0"
description = "Disaster-recovery handlers: table backups, regional failover, health checks and cross-region data validation"
requires-python = ">=3.10"
dependencies = []
keywords = ["disaster-recovery", "backup", "failover", "health-check", "replication", "dynamodb"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Recovery Tools",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["drcontrol"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
