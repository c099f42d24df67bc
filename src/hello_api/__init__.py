"""Hello World API: a single-route FastAPI service."""

__version__ = "1.0.0"
