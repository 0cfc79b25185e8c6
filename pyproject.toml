[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "layotto"
version = "0.1.0"
description = "Application runtime core: component registries, key-prefix strategies, pub/sub event delivery, wasm host calls and a client SDK for state, configuration, locks and events."
requires-python = ">=3.10"
keywords = ["runtime", "sidecar", "pubsub", "state", "distributed-lock", "configuration", "wasm"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["layotto"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
