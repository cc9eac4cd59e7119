[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cpushaper"
version = "0.1.0"
description = "Duty-cycle CPU shaping workers and monitoring queries for P95 CPU utilisation"
requires-python = ">=3.10"
dependencies = []
keywords = ["cpu", "duty-cycle", "monitoring", "utilization", "percentile", "oci"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cpushaper"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
