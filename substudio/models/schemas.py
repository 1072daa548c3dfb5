"""
Pydantic models for request/response validation.

This module contains all Pydantic BaseModel schemas used for API request
and response validation, plus the cookie-persisted CSRF token record.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class TokenRecord(BaseModel):
    """Server-issued CSRF token bound to an absolute expiry (ms since epoch). Immutable."""
    model_config = ConfigDict(frozen=True)

    token: str = Field(..., description="Base64-encoded random token")
    expires: int = Field(..., description="Expiry timestamp in milliseconds since epoch")


class CsrfTokenResponse(BaseModel):
    """Response body of GET /api/csrf."""
    csrfToken: str
    expires: int


class CsrfValidateRequest(BaseModel):
    """Request body of POST /api/csrf. A missing token is reported by the route, not rejected here."""
    token: Optional[str] = Field(None, description="CSRF token previously issued by GET /api/csrf")


class CsrfValidateResponse(BaseModel):
    """Result of an explicit token validation."""
    valid: bool
    error: Optional[str] = None


class CsrfErrorResponse(BaseModel):
    """Error body for unexpected failures in the token endpoint."""
    error: str
    code: str


class CsrfProtectionErrorResponse(BaseModel):
    """Error body returned by the CSRF protection middleware."""
    error: str
    code: str
    message: str
    timestamp: str
