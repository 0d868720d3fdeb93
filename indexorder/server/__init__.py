"""
HTTP surface of the index order service.

The FastAPI application lives in ``indexorder.server.main`` and is
imported on demand so that library users do not pull in the web stack.
"""

from .service import OrderService

__all__ = ["OrderService"]
