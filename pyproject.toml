[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "parkwatch"
version = "0.1.0"
description = "Parking-lot camera server: H.264 over RTSP/RTP, resident registration over HTTP, and number-plate extraction from I420 frames"
requires-python = ">=3.10"
keywords = ["rtsp", "rtp", "h264", "streaming", "parking", "anpr", "number-plate", "sqlite"]
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
    "Topic :: Multimedia :: Video",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
parkwatch-rtsp = "parkwatch.rtsp_server:main"
parkwatch-users = "parkwatch.user_server:main"

[tool.hatch.build.targets.wheel]
packages = ["parkwatch"]

[tool.pytest.ini_options]
addopts = "-ra"
