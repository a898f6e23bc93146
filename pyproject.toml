[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trueauth"
version = "0.1.0"
description = "User, identity and audit-log models for an authentication service, stored in SQLite, with signed session cookies and hCaptcha verification"
requires-python = ">=3.10"
dependencies = [
    "bcrypt",
]
keywords = ["authentication", "users", "identity", "audit-log", "sessions", "hcaptcha", "sqlite"]
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
    "Topic :: System :: Systems Administration :: Authentication/Directory",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["trueauth"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
