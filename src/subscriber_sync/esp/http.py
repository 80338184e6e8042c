"""
HTTP helpers for ESP connectors
Maps provider responses and transport failures to the connector error taxonomy
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import (
    ConnectorError,
    InvalidCredentialError,
    ListNotFoundError,
    ProviderNetworkError,
    ProviderServerError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def raise_for_provider_status(response: httpx.Response, provider: str = "ESP") -> None:
    """
    Raise the matching ConnectorError for a non-2xx provider response

    Args:
        response: Provider response
        provider: Provider name used in error messages
    """
    status = response.status_code
    if status < 400:
        return

    if status in (401, 403):
        raise InvalidCredentialError(
            f"{provider} rejected the credential (HTTP {status})", remote_status=status
        )
    if status == 404:
        raise ListNotFoundError(f"{provider} list not found (HTTP 404)", remote_status=status)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        details = {"retry_after": retry_after} if retry_after else None
        raise RateLimitedError(
            f"{provider} rate limit exceeded, retry later", remote_status=status, details=details
        )
    if status >= 500:
        raise ProviderServerError(f"{provider} server error (HTTP {status})", remote_status=status)

    raise ConnectorError(f"{provider} request failed (HTTP {status})", remote_status=status)


def provider_request(
    client: httpx.Client,
    method: str,
    url: str,
    provider: str = "ESP",
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json: Optional[Dict[str, Any]] = None,
) -> Any:
    """
    Make an HTTP request to a provider API and return the decoded JSON body

    Raises:
        ConnectorError subclass for HTTP and transport failures
    """
    try:
        response = client.request(method, url, headers=headers, params=params, json=json)
    except httpx.TimeoutException as e:
        logger.error(f"{provider} request timed out: {method} {url}")
        raise ProviderNetworkError(f"{provider} request timed out: {e}") from e
    except httpx.TransportError as e:
        logger.error(f"{provider} network error: {method} {url}: {e}")
        raise ProviderNetworkError(f"{provider} network error: {e}") from e

    raise_for_provider_status(response, provider)

    if not response.content:
        return None
    return response.json()
