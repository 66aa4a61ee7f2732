[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flashsale"
version = "0.1.0"
description = "Flash-sale service with per-route rate limiting, stock reserved in a key-value store and queued order settlement"
requires-python = ">=3.10"
dependencies = []
keywords = ["flash-sale", "seckill", "rate-limiting", "token-bucket", "gateway", "inventory", "wsgi"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
flashsale = "flashsale.handlers:main"

[tool.hatch.build.targets.wheel]
packages = ["flashsale"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
