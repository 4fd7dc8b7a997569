"""ASGI server layer: app factory, lifespan, handlers, management API."""

from failover_sentinel.server.app import create_app

__all__ = ["create_app"]
