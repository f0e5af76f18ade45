[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "minirpc"
version = "1.0.0"
description = "A small RPC framework: length-prefixed TCP transport, JSON request/response encoding, method registration and a blocking or asynchronous client"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "tcp", "json", "remote procedure call", "client", "server", "service discovery"]
classifiers = [
    "Development Status :: 4 - Beta",
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

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
minirpc-calculator = "minirpc.calculator_demo:main"
minirpc-benchmark = "minirpc.benchmark:main"

[tool.hatch.build.targets.wheel]
packages = ["minirpc"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
