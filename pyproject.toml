[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "buildshim"
version = "0.1.0"
description = "Chunked read-ahead prefetching and a packet-multiplexing stream pipeline for build proxies"
requires-python = ">=3.10"
dependencies = []
keywords = ["prefetch", "cache", "stream", "multiplexing", "build", "proxy"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["buildshim"]

[tool.pytest.ini_options]
addopts = "-ra"
