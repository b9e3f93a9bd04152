[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "botservice"
version = "1.0.0"
description = "Conversational bot engine: flows, steps, smart replies, sessions, memory, conditionals, triggers and async tasks"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "chatbot",
    "conversation",
    "bot",
    "flows",
    "triggers",
    "feature-flags",
    "task-queue",
]
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
    "Topic :: Communications :: Chat",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["botservice"]

[tool.hatch.build.targets.sdist]
include = ["botservice", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
