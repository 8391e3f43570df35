[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "coreos_updates"
version = "0.1.0"
description = "Update logic for OSTree-based operating systems: layered configuration, Cincinnati update hints, FleetLock reboot coordination and rpm-ostree deployment management."
requires-python = ">=3.11"
keywords = ["ostree", "rpm-ostree", "cincinnati", "fleetlock", "auto-update", "motd"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
coreos-updates = "coreos_updates.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["coreos_updates"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
