"""Register directory applications protected by certificate credentials."""

__version__ = "0.1.0"
