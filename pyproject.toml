[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wfsimg"
version = "0.1.0"
description = "A small block-based filesystem stored in a single disk image, with colour tags as extended attributes"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "disk image", "inode", "bitmap", "xattr"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
wfs-mkfs = "wfsimg.mkfs:main"

[tool.hatch.build.targets.wheel]
packages = ["wfsimg"]

[tool.pytest.ini_options]
addopts = "-ra"
