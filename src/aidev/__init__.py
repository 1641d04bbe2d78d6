"""AIDev: tool-execution orchestration for an IDE coding assistant."""

__version__ = "0.1.0"

__all__ = ["__version__"]
