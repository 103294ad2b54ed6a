[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tinyloader"
version = "0.1.0"
description = "PE image inspection, Windows loader layout planning and small Linux system utilities"
requires-python = ">=3.10"
dependencies = []
keywords = ["pe", "portable-executable", "coff", "loader", "import-address-table", "binary", "inspection"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Software Development :: Disassemblers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
readwin = "tinyloader.readwin:main"
tinyfetch = "tinyloader.tinyfetch:main"
tinyloader-env = "tinyloader.env:main"

[tool.hatch.build.targets.wheel]
packages = ["tinyloader"]

[tool.pytest.ini_options]
addopts = "-ra"
