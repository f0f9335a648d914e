"""HTTP server for board sessions."""

from .app import create_app

__all__ = ["create_app"]
