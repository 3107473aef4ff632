"""REST API layer for trivy-ui.

Exposes:
    create_app -- FastAPI application factory.
"""

from trivyui.api.app import create_app

__all__ = ["create_app"]
