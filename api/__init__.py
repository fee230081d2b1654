"""API Package.

FastAPI server for the carrier reconciliation system.
"""

from api.server import create_app

__all__ = [
    "create_app",
]
