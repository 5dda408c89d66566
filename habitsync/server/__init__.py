"""HTTP server exposing a remote event store.

A reference backend for HttpRemoteStore, useful for self-hosting and tests.
"""

from .app import create_app

__all__ = ["create_app"]
