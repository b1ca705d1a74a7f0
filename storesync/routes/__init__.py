"""
Routes package.
"""

from .connections import router as connections_router
from .usage import router as usage_router

__all__ = [
    "connections_router",
    "usage_router",
]
