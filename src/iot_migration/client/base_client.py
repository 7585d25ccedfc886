"""Async HTTP plumbing shared by the registry clients.

Every registry call goes through :meth:`BaseAPIClient.request`, which paces
requests, logs them and turns error statuses into the typed exceptions the
migration engine branches on (conflict means "already exists", not-found
means "create first").
"""

import asyncio
import time
from typing import Any
from urllib.parse import urljoin

import httpx

from iot_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
)
from iot_migration.utils.logging import (
    get_logger,
    log_api_request,
    sanitize_payload,
    should_log_payloads,
    truncate_payload,
)

logger = get_logger(__name__)

# status -> (exception, message); 429 and 5xx are handled separately
STATUS_ERRORS: dict[int, tuple[type[APIError], str]] = {
    401: (AuthenticationError, "Registry rejected the token"),
    403: (AuthorizationError, "Token lacks permission for this registry"),
    404: (NotFoundError, "Resource not found"),
    409: (ConflictError, "Resource already exists"),
}


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text}
    return body if isinstance(body, dict) else {"detail": str(body)}


def _error_detail(body: dict[str, Any]) -> str:
    # Google-style APIs nest the message under "error"
    nested = body.get("error")
    if isinstance(nested, dict) and nested.get("message"):
        return str(nested["message"])
    return str(body.get("detail") or body.get("message") or "no detail")


def error_from_response(response: httpx.Response) -> APIError:
    """Build the exception for an error response."""
    status = response.status_code
    body = _error_body(response)

    if status in STATUS_ERRORS:
        error_type, message = STATUS_ERRORS[status]
        return error_type(message, status_code=status, response=body)

    if status == 429:
        header = response.headers.get("Retry-After", "")
        return RateLimitError(
            "Registry rate limit hit",
            status_code=status,
            response=body,
            retry_after=int(header) if header.isdigit() else None,
        )

    if status >= 500:
        return ServerError(f"Registry failure: {_error_detail(body)}", status_code=status, response=body)

    return APIError(f"Request rejected: {_error_detail(body)}", status_code=status, response=body)


class RequestPacer:
    """Spaces requests at least ``1 / per_second`` seconds apart."""

    def __init__(self, per_second: int):
        self.interval = 1.0 / per_second if per_second > 0 else 0.0
        self._lock = asyncio.Lock()
        self._last = 0.0

    async def wait(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            delay = self._last + self.interval - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


class BaseAPIClient:
    """Pooled httpx client that speaks JSON with bearer-token auth.

    Relative endpoints are resolved against ``base_url``; absolute URLs
    (custom ``:verb`` methods, code endpoints) are used unchanged.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        verify_ssl: bool = True,
        timeout: int = 30,
        rate_limit: int = 50,
        max_connections: int = 50,
        max_keepalive_connections: int = 20,
        log_payloads: bool = False,
        max_payload_size: int = 10000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Args:
            base_url: Registry resource root
            token: Bearer token
            verify_ssl: Verify TLS certificates
            timeout: Per-request timeout in seconds
            rate_limit: Requests per second, 0 for unlimited
            max_connections: Connection pool size
            max_keepalive_connections: Idle connections kept open
            log_payloads: Log sanitized bodies at DEBUG
            max_payload_size: Characters of a body to log
            transport: Replacement transport (httpx.MockTransport in tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.log_payloads = log_payloads
        self.max_payload_size = max_payload_size
        self.pacer = RequestPacer(rate_limit)

        self.client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_keepalive_connections,
            ),
            verify=verify_ssl,
            transport=transport,
        )

        logger.debug("http_client_created", base_url=self.base_url, rate_limit=rate_limit)

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return urljoin(f"{self.base_url}/", endpoint.lstrip("/"))

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send one request and decode the JSON answer.

        Returns:
            The decoded object, ``{}`` for an empty body

        Raises:
            NetworkError: On timeouts and connection failures
            APIError: Or the subclass matching the error status
        """
        url = self._build_url(endpoint)
        trace_payloads = should_log_payloads(self.log_payloads)

        if trace_payloads and json_data is not None:
            logger.debug(
                "registry_request_body",
                method=method,
                url=url,
                payload=truncate_payload(sanitize_payload(json_data), self.max_payload_size),
            )

        await self.pacer.wait()
        started = time.monotonic()
        try:
            response = await self.client.request(
                method, url, params=params, json=json_data, **kwargs
            )
        except httpx.TimeoutException as e:
            logger.warning("registry_timeout", method=method, url=url, error=str(e))
            raise NetworkError(f"Timed out calling {url}: {e}") from e
        except httpx.TransportError as e:
            logger.warning("registry_unreachable", method=method, url=url, error=str(e))
            raise NetworkError(f"Could not reach {url}: {e}") from e

        log_api_request(
            logger,
            method=method,
            url=url,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        if trace_payloads and response.text:
            logger.debug(
                "registry_response_body",
                url=url,
                status_code=response.status_code,
                payload=response.text[: self.max_payload_size],
            )

        if response.is_error:
            raise error_from_response(response)
        if not response.content:
            return {}

        try:
            data = response.json()
        except ValueError as e:
            raise APIError(
                f"Registry answered with non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from e
        return data if isinstance(data, dict) else {"results": data}

    async def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.request("GET", endpoint, params=params)

    async def post(
        self, endpoint: str, json_data: dict[str, Any] | None = None, **kwargs: Any
    ) -> dict[str, Any]:
        return await self.request("POST", endpoint, json_data=json_data, **kwargs)

    async def patch(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.request("PATCH", endpoint, params=params, json_data=json_data)

    async def delete(self, endpoint: str) -> dict[str, Any]:
        return await self.request("DELETE", endpoint)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
