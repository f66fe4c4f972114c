[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "weir"
version = "0.1.0"
description = "Building blocks for a MySQL-protocol database proxy: wire encoding, packet framing, handshakes, namespaces, rate limiting and metrics."
requires-python = ">=3.10"
dependencies = []
keywords = ["mysql", "proxy", "protocol", "database", "namespace", "rate-limit"]
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
    "Topic :: Database :: Front-Ends",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["weir"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
