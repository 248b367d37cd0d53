[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sharddoc"
version = "0.1.0"
description = "Try-Confirm-Cancel transaction coordinator and a framed TCP protocol for a replicated SQL store"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "tcc",
    "try-confirm-cancel",
    "distributed-transactions",
    "two-phase-commit",
    "raft",
    "tcp",
    "protocol",
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
    "Topic :: System :: Distributed Computing",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sharddoc"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
