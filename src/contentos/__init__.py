"""Content OS: REACH pipeline workflow with role/stage authorization."""

__version__ = "0.1.0"
