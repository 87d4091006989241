[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "invok"
version = "0.1.0"
description = "Serverless function platform: container autoscaling runtime and command-line client"
requires-python = ">=3.10"
keywords = ["serverless", "functions", "autoscaling", "docker", "containers", "redis", "prometheus"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "httpx",
    "redis",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
    "responses",
]

[project.scripts]
invok = "invok.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["invok"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
