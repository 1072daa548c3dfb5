"""
Middleware package for request-level protections.
"""

from .csrf import CsrfProtectionMiddleware

__all__ = [
    "CsrfProtectionMiddleware",
]
