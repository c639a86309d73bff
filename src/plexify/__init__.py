"""Distributed media transcoding coordinated through a shared directory tree."""

__version__ = "0.4.0"
