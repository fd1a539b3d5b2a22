[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chainsync"
version = "0.1.0"
description = "Wallet middleware that follows confirmed blocks, classifies business transfers, sends signed transactions and notifies business platforms"
requires-python = ">=3.10"
keywords = ["wallet", "blockchain", "ethereum", "deposit", "withdraw", "synchronizer", "eip-1559"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Office/Business :: Financial",
]
dependencies = [
    "requests",
    "tenacity",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["chainsync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
