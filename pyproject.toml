[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zipline"
version = "0.1.0"
description = "Routing core for a stream function network: frames, metadata, routing, authentication, logging and a zipper server."
requires-python = ">=3.10"
keywords = ["streaming", "serverless", "routing", "frames", "metadata", "msgpack"]
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
]
dependencies = [
    "msgpack",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["zipline"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
