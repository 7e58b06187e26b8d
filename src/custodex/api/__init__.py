"""HTTP API."""

from custodex.api.app import create_app

__all__ = ["create_app"]
