[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kamu-node"
version = "0.1.0"
description = "Oracle provider that answers on-chain data requests with ODF query results, plus a release helper"
requires-python = ">=3.11"
keywords = ["oracle", "ethereum", "open-data-fabric", "cbor", "json-rpc", "release"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "requests>=2.28",
    "cbor2>=5.4",
    "pyyaml>=6.0",
    "semver>=3.0",
    "pycryptodome>=3.15",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
kamu-oracle-provider = "kamu_node.app:main"
kamu-release = "kamu_node.release:main"

[tool.hatch.build.targets.wheel]
packages = ["kamu_node"]

[tool.hatch.build.targets.sdist]
include = ["kamu_node", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
ignore_missing_imports = true
