"""MiniMall auth and webhook service."""

__version__ = "0.1.0"
