"""
CSRF protection middleware.

Validates CSRF tokens for state-changing /api/ requests before they reach a
route handler. The submitted token (X-CSRF-Token header, or the _csrf query
parameter for plain form posts) must match the record in the __csrf_token
cookie issued by GET /api/csrf.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from substudio.models import CsrfProtectionErrorResponse
from substudio.services.csrf_service import (
    CSRF_COOKIE_NAME,
    CSRF_ERRORS,
    CSRF_HEADER_NAME,
    CsrfTokenMalformedError,
    extract_csrf_token,
    is_csrf_token_expired,
    parse_token_cookie,
    validate_csrf_token,
)
from substudio.utils.logging_utils import get_request_logger


# GET, HEAD, OPTIONS do not modify state
CSRF_PROTECTED_METHODS = ("POST", "PUT", "DELETE", "PATCH")

DEFAULT_EXEMPT_ROUTES = (
    "/api/csrf",
    "/api/auth/callback",
)


@dataclass
class CsrfValidationResult:
    """Outcome of validating the CSRF token carried by a request."""
    is_valid: bool
    error: Optional[str] = None
    error_code: Optional[str] = None


def requires_csrf_protection(
    method: str,
    path: str,
    exempt_routes: Iterable[str] = DEFAULT_EXEMPT_ROUTES
) -> bool:
    """Check whether a request with this method and path needs a CSRF token."""
    if method.upper() not in CSRF_PROTECTED_METHODS:
        return False

    if any(path.startswith(route) for route in exempt_routes):
        return False

    return path.startswith("/api/")


def validate_request_csrf_token(request: Request) -> CsrfValidationResult:
    """
    Validate the CSRF token of a request against its CSRF cookie.

    Returns:
        CsrfValidationResult with an error message and code on failure
    """
    submitted_token = extract_csrf_token(request.headers, request.query_params)
    if not submitted_token:
        return CsrfValidationResult(
            is_valid=False,
            error=CSRF_ERRORS["MISSING_TOKEN"],
            error_code="CSRF_TOKEN_MISSING"
        )

    cookie_value = request.cookies.get(CSRF_COOKIE_NAME)
    if not cookie_value:
        return CsrfValidationResult(
            is_valid=False,
            error="CSRF cookie not found. Please refresh the page and try again.",
            error_code="CSRF_COOKIE_MISSING"
        )

    try:
        stored_token_data = parse_token_cookie(cookie_value)
    except CsrfTokenMalformedError:
        return CsrfValidationResult(
            is_valid=False,
            error=CSRF_ERRORS["MALFORMED_TOKEN"],
            error_code="CSRF_COOKIE_MALFORMED"
        )

    if not validate_csrf_token(submitted_token, stored_token_data):
        if is_csrf_token_expired(stored_token_data):
            return CsrfValidationResult(
                is_valid=False,
                error=CSRF_ERRORS["EXPIRED_TOKEN"],
                error_code="CSRF_TOKEN_EXPIRED"
            )
        return CsrfValidationResult(
            is_valid=False,
            error=CSRF_ERRORS["INVALID_TOKEN"],
            error_code="CSRF_TOKEN_INVALID"
        )

    return CsrfValidationResult(is_valid=True)


def create_csrf_error_response(error: str, error_code: str, status_code: int = 403) -> JSONResponse:
    """Build the standard JSON body returned when CSRF protection blocks a request."""
    body = CsrfProtectionErrorResponse(
        error=error,
        code=error_code,
        message="CSRF protection blocked this request. Please refresh the page and try again.",
        timestamp=datetime.now(timezone.utc).isoformat()
    )
    return JSONResponse(
        content=body.model_dump(),
        status_code=status_code,
        headers={"Cache-Control": "no-store"}
    )


def add_csrf_token_to_response(response: Response, token: str) -> Response:
    """Expose a (refreshed) CSRF token to the client through the response headers."""
    response.headers[CSRF_HEADER_NAME] = token
    return response


class CsrfProtectionMiddleware(BaseHTTPMiddleware):
    """
    Reject state-changing /api/ requests that do not carry a valid CSRF token.

    Args:
        app: The wrapped ASGI application
        enabled: Turn the check off entirely (local tooling only)
        exempt_routes: Path prefixes that skip validation
    """

    def __init__(
        self,
        app: ASGIApp,
        enabled: bool = True,
        exempt_routes: Iterable[str] = DEFAULT_EXEMPT_ROUTES
    ):
        super().__init__(app)
        self.enabled = enabled
        self.exempt_routes = tuple(exempt_routes)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        path = request.url.path

        if not self.enabled or not requires_csrf_protection(method, path, self.exempt_routes):
            return await call_next(request)

        logger = get_request_logger(str(uuid.uuid4()))
        user_agent = (request.headers.get("user-agent") or "")[:100]
        logger.debug(f"CSRF protection check: {method} {path} (user_agent={user_agent})")

        try:
            validation = validate_request_csrf_token(request)
        except Exception as e:
            logger.error(f"CSRF validation error on {method} {path}: {str(e)}")
            validation = CsrfValidationResult(
                is_valid=False,
                error="Internal error during CSRF validation",
                error_code="CSRF_VALIDATION_ERROR"
            )

        if not validation.is_valid:
            logger.warning(
                f"CSRF validation failed: {method} {path} "
                f"code={validation.error_code} error={validation.error} (user_agent={user_agent})"
            )
            return create_csrf_error_response(
                validation.error,
                validation.error_code,
                400 if validation.error_code == "CSRF_TOKEN_MISSING" else 403
            )

        logger.debug(f"CSRF validation passed: {method} {path}")
        return await call_next(request)
