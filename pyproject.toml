[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sopskit"
version = "0.1.0"
description = "Building blocks for encrypted configuration files: AES-GCM value encryption, age and Azure Key Vault master keys, format detection, key-group diffs, audit events and command execution with decrypted content."
requires-python = ">=3.10"
keywords = [
    "secrets",
    "encryption",
    "aes-gcm",
    "age",
    "x25519",
    "key-management",
    "azure-key-vault",
    "configuration",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "pyyaml",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["sopskit"]

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
