[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "byohost"
version = "0.1.0"
description = "Cloud-init bootstrap execution and Kubernetes component installation for bring-your-own hosts"
requires-python = ">=3.10"
keywords = ["kubernetes", "cloud-init", "installer", "bootstrap", "bundle"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Installation/Setup",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
byoh-installer = "byohost.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["byohost"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
