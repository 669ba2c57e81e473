[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cablegate"
version = "0.1.0"
description = "Building blocks for an Action Cable compatible WebSocket server: sessions hub, encoders, metrics, JWT identification and configuration"
requires-python = ">=3.10"
keywords = [
    "actioncable",
    "websocket",
    "pubsub",
    "metrics",
    "prometheus",
    "statsd",
    "jwt",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "pyjwt",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cablegate"]

[tool.hatch.build.targets.sdist]
include = [
    "cablegate",
    "tests",
]

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
warn_redundant_casts = true
