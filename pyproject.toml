[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lowlatvideo"
version = "1.0.0"
description = "Low-latency video capture, upscaling and display pipeline"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "pillow",
    "scipy",
    "pygame",
]
keywords = ["video", "camera", "upscaling", "low latency", "frame buffer", "pipeline"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: X11 Applications",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Display",
    "Topic :: Multimedia :: Video :: Capture",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
lowlatvideo = "lowlatvideo.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["lowlatvideo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
