[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fwstorage"
version = "0.1.0"
description = "Node storage for a merkle trie: nibble paths, node hashing, linear stores and revisioned node stores"
requires-python = ">=3.10"
dependencies = []
keywords = ["merkle", "trie", "storage", "database", "hashing", "free-list"]
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
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fwstorage"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
