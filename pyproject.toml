[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "k0sinttest"
version = "0.1.0"
description = "Helpers for integration tests of Kubernetes clusters: resource watching, contexts, manifests and Docker node discovery"
requires-python = ">=3.10"
keywords = ["kubernetes", "integration-testing", "watch", "k0s", "manifests"]
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
    "Topic :: Software Development :: Testing",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["k0sinttest"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
