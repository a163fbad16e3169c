"""
rest.py - Salesforce REST API client

Thin httpx wrapper that borrows the access token of a locally authorized
org. Used where the CLI has no direct equivalent (anonymous Apex via the
Tooling API, org-wide coverage aggregates).
"""

from __future__ import annotations

from typing import Any

import httpx
import orjson

from sfmcp.core.errors import ErrorCode, ExternalRunnerFailure
from sfmcp.foundation.config.logging import get_logger
from sfmcp.foundation.config.settings import get_setting

from .connection import CredentialStore

logger = get_logger("sfmcp.rest")

DEFAULT_API_VERSION = "62.0"


def _failure_from_response(response: httpx.Response) -> ExternalRunnerFailure:
    try:
        body = orjson.loads(response.content) if response.content else None
    except orjson.JSONDecodeError:
        body = None

    # Salesforce returns a list of {message, errorCode, fields}.
    first = body[0] if isinstance(body, list) and body and isinstance(body[0], dict) else None
    if first is None and isinstance(body, dict):
        first = body

    if first is not None:
        return ExternalRunnerFailure(
            str(first.get("message") or f"HTTP {response.status_code}"),
            name=first.get("errorCode") or first.get("error") or "HttpError",
            exit_code=response.status_code,
            context={"errors": body},
            code=ErrorCode.EXTERNAL_API_ERROR,
        )
    return ExternalRunnerFailure(
        f"HTTP {response.status_code}: {response.text[:500]}",
        name="HttpError",
        exit_code=response.status_code,
        code=ErrorCode.EXTERNAL_API_ERROR,
    )


class RestClient:
    """Async REST client keyed by target org."""

    def __init__(
        self,
        credentials: CredentialStore,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._credentials = credentials
        self._timeout = float(timeout if timeout is not None else get_setting("rest.timeout_seconds", 120.0))
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure async client is ready."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def request(
        self,
        target: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send a request against `target`'s instance.

        `path` is either absolute (``/services/...``) or relative to
        ``/services/data/vXX.X/``.
        """
        instance_url, token, api_version = await self._credentials.get_access_token(target)
        if path.startswith("/services/"):
            url = f"{instance_url}{path}"
        else:
            url = f"{instance_url}/services/data/v{api_version or DEFAULT_API_VERSION}/{path.lstrip('/')}"

        client = await self._ensure_client()
        logger.debug("REST request", method=method, path=path, target_org=target)
        try:
            response = await client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise ExternalRunnerFailure(
                f"Request to {target} failed: {e}",
                name=type(e).__name__,
                code=ErrorCode.EXTERNAL_UNAVAILABLE,
            ) from e

        if response.status_code >= 400:
            raise _failure_from_response(response)
        if not response.content:
            return None
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise ExternalRunnerFailure(
                f"Unexpected non-JSON response from {target} (HTTP {response.status_code})",
                name="InvalidResponse",
                exit_code=response.status_code,
                context={"contentType": response.headers.get("content-type"), "body": response.text[:500]},
                code=ErrorCode.EXTERNAL_API_ERROR,
            ) from e

    async def query(self, target: str, soql: str, tooling: bool = False) -> dict[str, Any]:
        path = "tooling/query/" if tooling else "query/"
        return await self.request(target, "GET", path, params={"q": soql})

    async def execute_anonymous(self, target: str, apex_code: str) -> dict[str, Any]:
        return await self.request(
            target,
            "GET",
            "tooling/executeAnonymous/",
            params={"anonymousBody": apex_code},
        )

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["DEFAULT_API_VERSION", "RestClient"]
