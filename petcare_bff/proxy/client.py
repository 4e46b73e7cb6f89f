"""Upstream API client used by the proxy and auth routes."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Protocol, Tuple

import httpx
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Inbound headers passed through to the upstream API
PASS_THROUGH_HEADERS = ("accept", "content-type", "user-agent")

SESSION_TOKEN_KEY = "token"


class ResponseKind(str, Enum):
    JSON = "json"
    BINARY = "binary"


@dataclass
class UpstreamResponse:
    """
    Response of one upstream call.

    Attributes:
        status: HTTP status code
        headers: (name, value) pairs as received; values may be None
        body: None when empty, bytes for binary responses, otherwise the
              decoded JSON value (or text when the body was not JSON)
    """

    status: int
    headers: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    body: Any = None


class UpstreamError(Exception):
    """
    Raised when an upstream call fails.

    Attributes:
        status: Upstream status code, if a response was received
        body: Upstream error body, if a response was received
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamClient(Protocol):
    """Forwards one request to the upstream API."""

    async def forward(
        self,
        method: str,
        path: str,
        body: Optional[bytes],
        response_kind: ResponseKind,
        headers: Optional[Mapping[str, str]] = None,
    ) -> UpstreamResponse: ...


def decode_body(content: bytes, content_type: str) -> Any:
    """Decode a structured response body: JSON when possible, else text."""
    if not content:
        return None
    text = content.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        if "json" in content_type.lower():
            logger.warning("Upstream sent malformed JSON body")
        return text


class HttpxUpstreamClient:
    """UpstreamClient over a shared ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def create(cls, base_url: str, timeout: float) -> "HttpxUpstreamClient":
        limits = httpx.Limits(max_connections=100, max_keepalive_connections=20)
        client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            limits=limits,
            follow_redirects=False,
        )
        return cls(client)

    async def forward(
        self,
        method: str,
        path: str,
        body: Optional[bytes],
        response_kind: ResponseKind,
        headers: Optional[Mapping[str, str]] = None,
    ) -> UpstreamResponse:
        try:
            response = await self._client.request(
                method.upper(),
                path,
                content=body,
                headers=dict(headers or {}),
            )
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Upstream timeout: {e}") from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Upstream connection error: {e}") from e

        if response_kind == ResponseKind.BINARY:
            payload: Any = response.content or None
        else:
            payload = decode_body(response.content, response.headers.get("content-type", ""))

        return UpstreamResponse(
            status=response.status_code,
            headers=list(response.headers.multi_items()),
            body=payload,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def build_upstream_headers(
    request: Request,
    session: Optional[Mapping[str, Any]] = None,
    api_key: str = "",
) -> dict:
    """
    Build headers for an upstream request.

    Args:
        request: Inbound request
        session: Session data; its upstream token becomes a Bearer header
        api_key: Optional service-to-service key

    Returns:
        Headers dict for the upstream call
    """
    headers = {}
    for name in PASS_THROUGH_HEADERS:
        value = request.headers.get(name)
        if value:
            headers[name] = value

    if api_key:
        headers["x-api-key"] = api_key

    token = session.get(SESSION_TOKEN_KEY) if session is not None else None
    if token:
        headers["authorization"] = f"Bearer {token}"

    headers["x-forwarded-proto"] = request.url.scheme
    headers["x-forwarded-host"] = request.headers.get("host", "")
    return headers
