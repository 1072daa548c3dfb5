"""
Routers package for API endpoints.

This package contains all API route handlers organized by functionality.
"""

from .csrf import router as csrf_router

__all__ = [
    "csrf_router",
]
