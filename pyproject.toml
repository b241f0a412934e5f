[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "enetpeer"
version = "0.4.0"
description = "Peer state machine for a reliable UDP protocol: sequencing, fragmentation, acknowledgements and dispatch."
requires-python = ">=3.10"
dependencies = []
keywords = ["networking", "udp", "reliable", "protocol", "peer", "sequencing", "fragmentation"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["enetpeer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
