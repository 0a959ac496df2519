"""HTTP service layer.

- schemas.py: request bodies
- api.py: REST and WebSocket endpoints
- app.py: application factory wiring store, gateway and pipeline
"""
from .app import create_app

__all__ = ["create_app"]
