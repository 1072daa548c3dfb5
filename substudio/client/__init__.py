"""
Client package: CSRF token lifecycle for processes calling the API.
"""

from .csrf_manager import CsrfTokenManager, CsrfTokenState
from .protected import CsrfTokenUnavailableError, send_with_csrf, with_csrf_token

__all__ = [
    "CsrfTokenManager",
    "CsrfTokenState",
    "CsrfTokenUnavailableError",
    "send_with_csrf",
    "with_csrf_token",
]
