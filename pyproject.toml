[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rvnllm"
version = "0.0.1"
description = "GGUF model file reader and inspector with reference CPU tensor operations."
requires-python = ">=3.10"
dependencies = []
keywords = ["gguf", "llm", "tensor", "quantization", "model-inspection"]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rvnllm = "rvnllm.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["rvnllm"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
