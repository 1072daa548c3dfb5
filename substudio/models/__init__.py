"""
Models package for API request/response validation.

This package contains Pydantic models used throughout the application
for validating API requests and responses.
"""

from .schemas import (
    TokenRecord,
    CsrfTokenResponse,
    CsrfValidateRequest,
    CsrfValidateResponse,
    CsrfErrorResponse,
    CsrfProtectionErrorResponse,
)

__all__ = [
    "TokenRecord",
    "CsrfTokenResponse",
    "CsrfValidateRequest",
    "CsrfValidateResponse",
    "CsrfErrorResponse",
    "CsrfProtectionErrorResponse",
]
