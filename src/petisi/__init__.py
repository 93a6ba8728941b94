"""petisi: petition form service for Indonesian village officials."""

__version__ = "0.1.0"
