"""
Helpers for sending CSRF-protected requests with httpx.

A 403 from a protected endpoint means the client's token went stale
(expired, or replaced by a newer cookie). It is handled by one silent
refresh and retry, not reported as a permanent denial.
"""

import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from substudio.client.csrf_manager import CsrfTokenManager
from substudio.services.csrf_service import CSRF_HEADER_NAME


logger = logging.getLogger(__name__)


class CsrfTokenUnavailableError(Exception):
    """No CSRF token could be obtained; the protected action cannot proceed yet."""


def with_csrf_token(
    token: Optional[str],
    headers: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """
    Return a copy of headers carrying the CSRF token.

    A missing token leaves the headers unchanged.
    """
    merged = dict(headers or {})
    if token:
        merged[CSRF_HEADER_NAME] = token
    return merged


async def send_with_csrf(
    client: httpx.AsyncClient,
    manager: CsrfTokenManager,
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    **kwargs: Any
) -> httpx.Response:
    """
    Send a state-changing request with the current CSRF token attached.

    Args:
        client: Client sharing the cookie jar that holds the CSRF cookie
        manager: Token manager for that client
        method: HTTP method (POST, PUT, PATCH, DELETE)
        url: Request URL
        headers: Extra request headers
        **kwargs: Passed through to client.request (json, data, params, ...)

    Returns:
        The response; after a 403 this is the response of the single retry

    Raises:
        CsrfTokenUnavailableError: If no token can be obtained
    """
    token = await manager.get_token()
    if not token:
        raise CsrfTokenUnavailableError(
            manager.get_current_data().error or "CSRF token unavailable"
        )

    response = await client.request(method, url, headers=with_csrf_token(token, headers), **kwargs)
    if response.status_code != 403:
        return response

    logger.info(f"{method} {url} rejected with 403, refreshing CSRF token and retrying once")
    await manager.refresh_token()
    token = manager.get_current_data().token
    if not token:
        raise CsrfTokenUnavailableError(
            manager.get_current_data().error or "CSRF token unavailable"
        )

    return await client.request(method, url, headers=with_csrf_token(token, headers), **kwargs)
