[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sampcef"
version = "0.1.0"
description = "Server side of an in-game browser bridge: protobuf packets, a TLS message transport and a game-server plugin core"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["samp", "browser", "protobuf", "game server", "plugin", "tls"]
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
    "Topic :: Games/Entertainment",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["sampcef"]

[tool.pytest.ini_options]
addopts = "-ra"
