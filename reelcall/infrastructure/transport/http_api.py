"""GenerationApi implementation over HTTP using httpx.

Talks to a Replicate-style REST API. Each method performs exactly one request;
non-2xx responses and connection problems are raised as ApiTransportError so
the classifier sees a status code, an error code and a message.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from reelcall.domain.interfaces.generation_api import GenerationApi
from reelcall.domain.models.common import JobId

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.replicate.com/v1"
DEFAULT_TIMEOUT_SECONDS = 60.0
USER_AGENT = "reelcall/0.3"


class ApiTransportError(Exception):
    """A failed request, exposing the RawError accessors."""

    def __init__(self, message: str, status: Optional[int] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self._message = message
        self._status = status
        self._code = error_code

    def status_code(self) -> Optional[int]:
        return self._status

    def code(self) -> Optional[str]:
        return self._code

    def message(self) -> Optional[str]:
        return self._message


def _error_message(response: httpx.Response) -> str:
    """Pulls a readable message out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        for field in ("detail", "error", "message", "title"):
            value = data.get(field)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return response.text[:200] or response.reason_phrase


def _connect_error_code(error: httpx.TransportError) -> str:
    text = str(error).lower()
    if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
        return "ENOTFOUND"
    if "reset" in text:
        return "ECONNRESET"
    return "ECONNREFUSED"


class HttpGenerationApi(GenerationApi):
    """Generation API client backed by a shared httpx.AsyncClient."""

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the HTTP transport.

        Args:
            api_token: Bearer token for the API.
            base_url: API root, without a trailing slash.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (e.g. httpx.MockTransport in tests).

        Raises:
            ValueError: If api_token is empty.
        """
        if not api_token:
            raise ValueError("Generation API token is required")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_token}",
                "User-Agent": USER_AGENT,
            },
        )
        logger.info(f"HttpGenerationApi initialized for {self.base_url}")

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        logger.debug(f"{method} {path}")
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise ApiTransportError(f"request timeout: {method} {path}", error_code=None) from e
        except httpx.ConnectError as e:
            raise ApiTransportError(f"connection failed: {e}", error_code=_connect_error_code(e)) from e
        except httpx.TransportError as e:
            raise ApiTransportError(f"connection error: {e}", error_code="ECONNRESET") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.debug(f"{method} {path} -> {response.status_code}: {message}")
            raise ApiTransportError(
                f"API error {response.status_code}: {message}",
                status=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    async def create_job(
        self,
        model: str,
        input: Dict[str, Any],
        webhook: Optional[str] = None,
        webhook_events_filter: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"input": input}
        if webhook:
            body["webhook"] = webhook
            if webhook_events_filter:
                body["webhook_events_filter"] = list(webhook_events_filter)

        # 'owner/name:version' pins a version; bare 'owner/name' uses the latest one
        if ":" in model:
            body["version"] = model.split(":", 1)[1]
            return await self._request("POST", "/predictions", json=body)
        return await self._request("POST", f"/models/{model}/predictions", json=body)

    async def get_job(self, job_id: JobId) -> Dict[str, Any]:
        return await self._request("GET", f"/predictions/{job_id}")

    async def cancel_job(self, job_id: JobId) -> Dict[str, Any]:
        return await self._request("POST", f"/predictions/{job_id}/cancel")

    async def list_models(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("GET", "/models", params={"cursor": cursor} if cursor else None)

    async def get_model(self, owner: str, name: str) -> Dict[str, Any]:
        return await self._request("GET", f"/models/{owner}/{name}")

    async def list_model_versions(self, owner: str, name: str, cursor: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "GET",
            f"/models/{owner}/{name}/versions",
            params={"cursor": cursor} if cursor else None,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
