"""HTTP client for external services.

Configures httpx clients with sensible defaults for timeouts and user agent.
Used by the GitHub, Upstash and Resend clients, which accept an injected
client so tests can swap in an ``httpx.MockTransport``.
"""

import httpx

# Default timeout configuration (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_READ_TIMEOUT = 30.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 10.0

USER_AGENT = "capturedesk/1.0"


def get_timeout() -> httpx.Timeout:
    """Get default timeout configuration."""
    return httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )


def get_headers(token: str | None = None) -> dict[str, str]:
    """Get default headers for API requests.

    Args:
        token: Optional bearer token added as the Authorization header.
    """
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def create_client(
    *,
    base_url: str = "",
    token: str | None = None,
    headers: dict[str, str] | None = None,
    timeout: httpx.Timeout | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an async HTTP client with configured defaults.

    Args:
        base_url: Base URL prepended to relative request paths.
        token: Optional bearer token.
        headers: Extra headers merged over the defaults.
        timeout: Custom timeout configuration. Uses defaults if not provided.
        transport: Optional transport (tests pass ``httpx.MockTransport``).

    Example:
        async with create_client(base_url="https://api.github.com", token=t) as client:
            response = await client.get("/rate_limit")
    """
    merged = get_headers(token)
    if headers:
        merged.update(headers)
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout or get_timeout(),
        headers=merged,
        transport=transport,
    )
