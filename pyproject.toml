[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "agsandbox"
version = "0.7.0"
description = "Command-line parsing, agent launch profiles, a host auth proxy and a browser sidecar for running coding agents in a container sandbox"
requires-python = ">=3.10"
dependencies = []
keywords = ["sandbox", "container", "agents", "oauth", "proxy", "browser"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["agsandbox"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
