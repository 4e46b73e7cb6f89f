"""
Proxy Dispatcher
================

Forwards one inbound request to the upstream API and relays the answer.

Flow:
    rewrite path -> pick response kind from Accept -> forward -> relay

Upstream failures are handled here and never escape as exceptions: the
client gets the upstream's own status/body when there was a response,
otherwise 502 ``{"error": "Bad gateway"}``.
"""

import logging
from typing import Any, Iterable, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response

from .client import ResponseKind, UpstreamClient, UpstreamError, UpstreamResponse

logger = logging.getLogger(__name__)

# Never relayed: the BFF's own transport frames the response.
EXCLUDED_RESPONSE_HEADERS = frozenset({"transfer-encoding"})

# Recomputed for the relayed body (httpx has already decoded it).
RECOMPUTED_RESPONSE_HEADERS = frozenset({"content-length", "content-encoding"})

BAD_GATEWAY_BODY = {"error": "Bad gateway"}

_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def rewrite_path(path: str, prefix: str, api_prefix: str = "/api") -> str:
    """
    Map an inbound path onto the upstream API namespace.

    The matched prefix is kept as-is, so ``/pets/7`` becomes ``/api/pets/7``.

    Raises:
        ValueError: If ``path`` is not under ``prefix``
    """
    if path != prefix and not path.startswith(prefix.rstrip("/") + "/"):
        raise ValueError(f"Path {path!r} is not under prefix {prefix!r}")
    return f"{api_prefix}{prefix}{path[len(prefix):]}"


def wants_binary(accept: Optional[str]) -> bool:
    return "application/pdf" in (accept or "")


def _render(body: Any) -> Response:
    """Response carrying ``body``: raw bytes, plain text, or JSON."""
    if isinstance(body, (bytes, bytearray, memoryview)):
        return Response(content=bytes(body))
    if isinstance(body, str):
        return Response(content=body, media_type="text/plain; charset=utf-8")
    return JSONResponse(content=body)


def copy_headers(response: Response, headers: Iterable[Tuple[str, Optional[str]]]) -> None:
    """Copy upstream headers onto ``response``, skipping the excluded ones."""
    for name, value in headers:
        if value is None:
            continue
        lower = name.lower()
        if lower in EXCLUDED_RESPONSE_HEADERS or lower in RECOMPUTED_RESPONSE_HEADERS:
            continue
        if lower == "content-type":
            response.headers["content-type"] = value
        else:
            response.headers.append(name, value)


def relay_response(upstream: UpstreamResponse, response_kind: ResponseKind) -> Response:
    """
    Build the client response from an upstream response.

    Args:
        upstream: Response returned by the upstream client
        response_kind: Kind the upstream body was requested as

    Returns:
        Response with the upstream status, headers and body
    """
    body = upstream.body

    if body is None:
        response = Response(status_code=upstream.status)
    elif response_kind == ResponseKind.BINARY or isinstance(body, (bytes, bytearray, memoryview)):
        response = Response(content=bytes(body), status_code=upstream.status)
    else:
        response = _render(body)
        response.status_code = upstream.status
        logger.debug("Proxy success", extra={"status": upstream.status})

    copy_headers(response, upstream.headers)
    return response


def failure_response(exc: Exception) -> Response:
    """Relay the upstream's error when it answered, else 502 Bad gateway."""
    upstream_status = upstream_body = None
    if isinstance(exc, UpstreamError):
        upstream_status, upstream_body = exc.status, exc.body

    logger.error(
        "Proxy error",
        extra={"status": upstream_status, "error": str(exc)},
        exc_info=not isinstance(exc, UpstreamError),
    )

    response = _render(upstream_body if upstream_body is not None else BAD_GATEWAY_BODY)
    response.status_code = upstream_status or status.HTTP_502_BAD_GATEWAY
    return response


async def forward_request(
    request: Request,
    client: UpstreamClient,
    target_path: str,
    headers: Optional[dict] = None,
) -> Tuple[UpstreamResponse, ResponseKind]:
    """
    Send the inbound request to ``target_path`` upstream.

    Raises:
        UpstreamError: If the upstream call fails
    """
    method = request.method.upper()
    body = None if method in _BODYLESS_METHODS else await request.body()
    response_kind = ResponseKind.BINARY if wants_binary(request.headers.get("accept")) else ResponseKind.JSON

    upstream = await client.forward(method, target_path, body, response_kind, headers)
    return upstream, response_kind


async def dispatch(
    request: Request,
    client: UpstreamClient,
    target_path: str,
    headers: Optional[dict] = None,
) -> Response:
    """Forward a request and relay the result; failures become error responses."""
    try:
        upstream, response_kind = await forward_request(request, client, target_path, headers)
        return relay_response(upstream, response_kind)
    except Exception as e:
        return failure_response(e)
