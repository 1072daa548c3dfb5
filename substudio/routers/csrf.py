"""
CSRF router for token issuance and explicit validation.

This module provides endpoints for:
- Issuing a new CSRF token and persisting it in a secure cookie
- Validating a submitted token against that cookie before sensitive operations

Endpoints:
    GET  /api/csrf  -> {"csrfToken": str, "expires": int} + Set-Cookie __csrf_token
    POST /api/csrf  -> {"valid": bool, "error"?: str}
"""

import uuid
from typing import Optional
from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from substudio.config import get_settings
from substudio.middleware.csrf import add_csrf_token_to_response
from substudio.models import (
    CsrfErrorResponse,
    CsrfTokenResponse,
    CsrfValidateRequest,
    CsrfValidateResponse,
)
from substudio.services.csrf_service import (
    CSRF_COOKIE_CONFIG,
    CSRF_COOKIE_NAME,
    CSRF_ERRORS,
    CsrfTokenMalformedError,
    create_csrf_token_data,
    is_csrf_token_expired,
    parse_token_cookie,
    serialize_token_cookie,
    validate_csrf_token,
)
from substudio.utils.logging_utils import get_request_logger
from substudio.utils.timestamp_utils import format_ms_to_iso


router = APIRouter(prefix="/api", tags=["CSRF"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _user_agent(request: Request) -> str:
    return (request.headers.get("user-agent") or "")[:100]


@router.get(
    "/csrf",
    responses={200: {"model": CsrfTokenResponse}, 500: {"model": CsrfErrorResponse}}
)
async def issue_csrf_token(request: Request):
    """
    Generate a new CSRF token and set it in a secure cookie.

    The complete record (token + expiration) is stored in the HTTP-only
    cookie; the token itself is returned in the body for immediate use
    in the X-CSRF-Token header.

    Returns:
    - csrfToken: Base64 token to send back with mutating requests
    - expires: Expiry timestamp in milliseconds since epoch
    """
    logger = get_request_logger(str(uuid.uuid4()))

    try:
        token_data = create_csrf_token_data()

        response = JSONResponse(
            content={
                "csrfToken": token_data.token,
                "expires": token_data.expires
            },
            status_code=200,
            headers=NO_CACHE_HEADERS
        )
        response.set_cookie(
            value=serialize_token_cookie(token_data),
            secure=get_settings().is_production,
            **CSRF_COOKIE_CONFIG
        )
        add_csrf_token_to_response(response, token_data.token)

        logger.debug(
            f"CSRF token generated successfully (expires={format_ms_to_iso(token_data.expires)}, "
            f"user_agent={_user_agent(request)})"
        )
        return response

    except Exception as e:
        logger.error(f"Failed to generate CSRF token: {str(e)} (user_agent={_user_agent(request)})")
        return JSONResponse(
            content={
                "error": "Failed to generate CSRF token",
                "code": "CSRF_GENERATION_FAILED"
            },
            status_code=500
        )


@router.post(
    "/csrf",
    responses={
        200: {"model": CsrfValidateResponse},
        400: {"model": CsrfValidateResponse},
        403: {"model": CsrfValidateResponse},
        500: {"model": CsrfErrorResponse},
    }
)
async def validate_csrf(
    request: Request,
    payload: Optional[CsrfValidateRequest] = Body(None)
):
    """
    Validate a CSRF token submitted by the client against the CSRF cookie.

    This can be used for explicit token validation before sensitive operations.

    Responses:
    - 200 {"valid": true}
    - 400 missing token / missing cookie / malformed cookie
    - 403 expired or invalid token (treat as stale: refresh and retry)
    """
    logger = get_request_logger(str(uuid.uuid4()))

    try:
        submitted_token = payload.token if payload else None
        if not submitted_token:
            return JSONResponse(
                content={"valid": False, "error": CSRF_ERRORS["MISSING_TOKEN"]},
                status_code=400
            )

        cookie_value = request.cookies.get(CSRF_COOKIE_NAME)
        if not cookie_value:
            return JSONResponse(
                content={"valid": False, "error": CSRF_ERRORS["MISSING_TOKEN"]},
                status_code=400
            )

        try:
            stored_token_data = parse_token_cookie(cookie_value)
        except CsrfTokenMalformedError:
            return JSONResponse(
                content={"valid": False, "error": CSRF_ERRORS["MALFORMED_TOKEN"]},
                status_code=400
            )

        if not validate_csrf_token(submitted_token, stored_token_data):
            expired = is_csrf_token_expired(stored_token_data)
            logger.warning(
                f"CSRF token validation failed (reason={'expired' if expired else 'invalid'}, "
                f"user_agent={_user_agent(request)})"
            )
            return JSONResponse(
                content={
                    "valid": False,
                    "error": CSRF_ERRORS["EXPIRED_TOKEN"] if expired else CSRF_ERRORS["INVALID_TOKEN"]
                },
                status_code=403
            )

        logger.debug(f"CSRF token validated successfully (user_agent={_user_agent(request)})")
        return JSONResponse(content={"valid": True}, status_code=200)

    except Exception as e:
        logger.error(f"CSRF token validation error: {str(e)} (user_agent={_user_agent(request)})")
        return JSONResponse(
            content={
                "error": "Failed to validate CSRF token",
                "code": "CSRF_VALIDATION_FAILED"
            },
            status_code=500
        )
