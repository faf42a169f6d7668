"""Background sync layer for a GitHub issue and pull request sidebar."""

__version__ = "0.1.0"
