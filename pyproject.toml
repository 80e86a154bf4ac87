[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nowsec"
version = "0.1.0"
description = "Key hand-out over a Curve25519 session, AES-CCM frame security and device bookkeeping for small peer-to-peer wireless networks"
requires-python = ">=3.10"
keywords = ["security", "aes-ccm", "x25519", "curve25519", "handshake", "key-exchange", "peer-to-peer"]
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
    "Topic :: Security :: Cryptography",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["nowsec"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
