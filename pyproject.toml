[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "uefitask"
version = "0.1.0"
description = "Developer task runner for building, checking and testing UEFI applications under QEMU"
requires-python = ">=3.10"
dependencies = []
keywords = ["uefi", "qemu", "ovmf", "cargo", "build", "tasks"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
uefitask = "uefitask.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["uefitask"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
