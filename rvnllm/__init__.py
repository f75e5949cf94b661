"""GGUF model file reading, truncation, a small command line and reference CPU tensor operations."""

__version__ = "0.0.1"
__all__ = ["tensor_view", "types", "ops", "gguf", "truncate", "cli"]