[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "timoci"
version = "0.1.0"
description = "Push, pull, list, tag and sign module artifacts in OCI container registries, and keep inventories of Kubernetes objects."
requires-python = ">=3.10"
keywords = ["oci", "registry", "artifacts", "kubernetes", "cosign", "modules", "inventory"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Software Distribution",
    "Typing :: Typed",
]
dependencies = [
    "httpx",
    "semver",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["timoci"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
