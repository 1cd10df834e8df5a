"""
Shared HTTP utilities for the QuickBooks client and OAuth exchange.

Provides the transport-level retry pattern and response helpers.
"""

import logging
from typing import Any, Dict, Optional, Sequence, Type, Union

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

logger = logging.getLogger(__name__)


def safe_headers(response: requests.Response) -> Dict[str, str]:
    """
    Safely extract headers from a response object.

    Useful for mocked tests where response.headers might not be a proper dict.

    Returns:
        Dictionary of response headers, empty dict if not accessible
    """
    headers = getattr(response, "headers", None)
    if isinstance(headers, dict):
        return headers
    if hasattr(headers, "items"):
        return dict(headers.items())
    return {}


def get_header(response: requests.Response, name: str) -> Optional[str]:
    """Case-insensitive header lookup that tolerates mocked responses."""
    wanted = name.lower()
    for key, value in safe_headers(response).items():
        if key.lower() == wanted:
            return value
    return None


def is_json_response(response: requests.Response) -> bool:
    """Whether the response declares a JSON content type."""
    content_type = get_header(response, "Content-Type") or ""
    return "application/json" in content_type.lower()


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    json: Optional[Any] = None,
    data: Optional[Union[str, bytes, Dict[str, Any]]] = None,
    headers: Optional[Dict[str, str]] = None,
    auth: Optional[Any] = None,
    timeout: float = 30,
    retry_on: Sequence[Type[Exception]] = (
        requests.exceptions.Timeout,
        requests.exceptions.ConnectionError
    ),
    backoff: Dict[str, Union[int, float]] = None,
    attempts: int = 3,
    reraise: bool = True
) -> requests.Response:
    """
    Make HTTP request with retry on transport failures.

    Only exceptions in ``retry_on`` are retried; HTTP error statuses are
    returned to the caller for classification.

    Args:
        session: Requests session to use
        method: HTTP method (GET, POST, etc.)
        url: Full URL to request
        params: Query parameters
        json: JSON data for request body
        data: Raw or form data for request body
        headers: Additional headers (merged with session headers)
        auth: Requests auth tuple or object
        timeout: Request timeout in seconds
        retry_on: Exception types to retry on
        backoff: Backoff configuration dict with keys: multiplier, min, max
        attempts: Total attempts before giving up
        reraise: Whether to reraise exceptions after retry exhaustion

    Returns:
        HTTP response object
    """
    if backoff is None:
        backoff = {"multiplier": 1, "min": 1, "max": 10}

    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=backoff.get("multiplier", 1),
            min=backoff.get("min", 1),
            max=backoff.get("max", 10)
        ),
        retry=retry_if_exception_type(tuple(retry_on)),
        reraise=reraise
    )
    def _make_request() -> requests.Response:
        logger.debug(f"Making {method} request to {url}")

        return session.request(
            method=method,
            url=url,
            params=params,
            json=json,
            data=data,
            headers=headers or None,
            auth=auth,
            timeout=timeout
        )

    return _make_request()
