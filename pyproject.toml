[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "netsim"
version = "0.1.0"
description = "Simulated lossy RPC network, checked serialization, persistence and a consistency checker for testing distributed systems"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "simulation", "distributed-systems", "raft", "testing", "consistency"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Testing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["netsim"]

[tool.pytest.ini_options]
addopts = "-ra"
