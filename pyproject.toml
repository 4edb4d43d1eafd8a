[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "marblerun"
version = "0.1.0"
description = "Building blocks for confidential service meshes: attestation quotes, marble activation, key recovery and a Kubernetes admission injector"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "confidential-computing",
    "sgx",
    "attestation",
    "service-mesh",
    "kubernetes",
    "recovery",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
marblerun-hello = "marblerun.hello:main"

[tool.hatch.build.targets.wheel]
packages = ["marblerun"]

[tool.hatch.build.targets.sdist]
include = [
    "marblerun",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
