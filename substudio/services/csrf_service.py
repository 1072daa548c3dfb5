"""
CSRF (Cross-Site Request Forgery) token service.

This module provides utilities for:
- Generating cryptographically random CSRF tokens bound to an expiry
- Validating submitted tokens against the cookie-stored record with a
  constant-time comparison
- Serializing/parsing the token record to and from the CSRF cookie
- Extracting a submitted token from request headers or query parameters

The cookie is the source of truth: the server keeps no token state of its own.
"""

import base64
import binascii
import hmac
import json
import logging
import secrets
from typing import Mapping, Optional
from urllib.parse import quote, unquote

from pydantic import ValidationError

from substudio.models import TokenRecord
from substudio.utils.timestamp_utils import now_ms


logger = logging.getLogger(__name__)

# 32 bytes = 256 bits of entropy
CSRF_TOKEN_LENGTH = 32
CSRF_TOKEN_TTL_MS = 60 * 60 * 1000

CSRF_COOKIE_NAME = "__csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"
CSRF_QUERY_PARAM = "_csrf"

# Cookie attributes; "secure" is decided per deployment by the caller
CSRF_COOKIE_CONFIG = {
    "key": CSRF_COOKIE_NAME,
    "httponly": True,
    "samesite": "strict",
    "max_age": CSRF_TOKEN_TTL_MS // 1000,
    "path": "/",
}

CSRF_ERRORS = {
    "MISSING_TOKEN": "CSRF token is missing",
    "INVALID_TOKEN": "CSRF token is invalid",
    "EXPIRED_TOKEN": "CSRF token has expired",
    "MALFORMED_TOKEN": "CSRF token is malformed",
}


class CsrfTokenMalformedError(ValueError):
    """Raised when a CSRF cookie value cannot be parsed into a TokenRecord."""


def generate_csrf_token() -> str:
    """
    Generate a cryptographically secure CSRF token.

    Returns:
        Base64-encoded string of CSRF_TOKEN_LENGTH random bytes
    """
    return base64.b64encode(secrets.token_bytes(CSRF_TOKEN_LENGTH)).decode("ascii")


def create_csrf_token_data() -> TokenRecord:
    """
    Issue a new token record expiring CSRF_TOKEN_TTL_MS from now.

    Has no side effects: the caller persists the record as a cookie and
    hands the token to the client.
    """
    return TokenRecord(
        token=generate_csrf_token(),
        expires=now_ms() + CSRF_TOKEN_TTL_MS
    )


def is_csrf_token_expired(record: Optional[TokenRecord]) -> bool:
    """Check whether a token record is past its expiry. A missing record counts as expired."""
    if record is None:
        return True
    return now_ms() > record.expires


def _decode_token(value: str) -> Optional[bytes]:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def validate_csrf_token(
    submitted_token: Optional[str],
    stored_token_data: Optional[TokenRecord]
) -> bool:
    """
    Validate a submitted CSRF token against the stored token record.

    The decoded bytes are compared with hmac.compare_digest so the running
    time does not depend on the position of the first mismatching byte.
    Tokens have a fixed decoded length, so a length mismatch is rejected
    before the byte comparison. Badly encoded input is a non-match.

    Args:
        submitted_token: Token submitted by the client
        stored_token_data: Token record read from the CSRF cookie

    Returns:
        True if the token matches and the record has not expired
    """
    if not submitted_token or stored_token_data is None:
        return False

    if is_csrf_token_expired(stored_token_data):
        return False

    submitted_bytes = _decode_token(submitted_token)
    stored_bytes = _decode_token(stored_token_data.token)
    if submitted_bytes is None or stored_bytes is None:
        return False

    if len(submitted_bytes) != CSRF_TOKEN_LENGTH or len(stored_bytes) != CSRF_TOKEN_LENGTH:
        return False

    return hmac.compare_digest(submitted_bytes, stored_bytes)


def serialize_token_cookie(record: TokenRecord) -> str:
    """
    Serialize a token record into the CSRF cookie value.

    The value is the compact JSON object {"token": ..., "expires": ...},
    URL-encoded so it survives cookie quoting unchanged.
    """
    payload = json.dumps(
        {"token": record.token, "expires": record.expires},
        separators=(",", ":")
    )
    return quote(payload, safe="")


def parse_token_cookie(cookie_value: str) -> TokenRecord:
    """
    Parse a CSRF cookie value back into a TokenRecord.

    Tries the URL-decoded value first, then the raw value.

    Raises:
        CsrfTokenMalformedError: If neither form is a JSON token record
    """
    for candidate in (unquote(cookie_value), cookie_value):
        try:
            return TokenRecord.model_validate_json(candidate)
        except (ValidationError, ValueError):
            continue

    logger.debug("Unparseable CSRF cookie value (length %d)", len(cookie_value))
    raise CsrfTokenMalformedError(CSRF_ERRORS["MALFORMED_TOKEN"])


def extract_csrf_token(
    headers: Mapping[str, str],
    query_params: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """
    Extract a submitted CSRF token from a request.

    The X-CSRF-Token header is the primary channel; the _csrf query
    parameter is the fallback for form submissions that cannot set headers.

    Args:
        headers: Request headers (case-insensitive mapping)
        query_params: Request query parameters

    Returns:
        CSRF token string or None if not found
    """
    header_token = headers.get(CSRF_HEADER_NAME)
    if header_token:
        return header_token

    if query_params is not None:
        return query_params.get(CSRF_QUERY_PARAM) or None

    return None
