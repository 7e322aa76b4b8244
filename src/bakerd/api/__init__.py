"""Read-only HTTP API."""

from bakerd.api.app import create_app

__all__ = ["create_app"]
