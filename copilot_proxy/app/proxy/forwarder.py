"""
Copilot Forwarder - Streaming Upstream Relay
============================================

Forwards an inbound chat request to the copilot upstream and relays the
upstream response back to the caller as it arrives.

Flow:
-----
1. Parse the inbound JSON body and re-serialize it
2. Copy the whitelisted inbound headers, set Content-Type and Content-Length
3. POST to the upstream and wait for its status line and headers
4. Mirror status and headers, then stream the raw body chunk by chunk

A failure before upstream headers arrive becomes a 500 JSON error. Once
headers have been sent nothing can be amended: a mid-stream failure is logged
and the stream is terminated.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from ..config import Settings
from ..models import ErrorResponse, utc_timestamp

logger = logging.getLogger(__name__)


# Inbound headers copied to the upstream request, in this order
FORWARDED_HEADERS: Tuple[str, ...] = (
    "Authorization",
    "User-Agent",
    "Accept",
    "Accept-Language",
)

UPSTREAM_CONNECT_ERROR = "Failed to connect to copilot service"


# ============================================================================
# Request Helpers
# ============================================================================

class InvalidRequestBody(ValueError):
    """Raised when a JSON body parses to something other than an object or array."""


def media_type(content_type: Optional[str]) -> str:
    """Lower-cased media type without parameters ('' when absent)."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_json_content_type(content_type: Optional[str]) -> bool:
    """True only for application/json; +json types are not parsed."""
    return media_type(content_type) == "application/json"


def is_form_content_type(content_type: Optional[str]) -> bool:
    return media_type(content_type) == "application/x-www-form-urlencoded"


def form_to_dict(items: List[Tuple[str, Any]]) -> Dict[str, Any]:
    """
    Collapse form fields into a dict; a repeated key becomes a list of values.

    Example:
        >>> form_to_dict([("tag", "a"), ("tag", "b"), ("message", "hi")])
        {'tag': ['a', 'b'], 'message': 'hi'}
    """
    body: Dict[str, Any] = {}
    for key, value in items:
        if key not in body:
            body[key] = value
        elif isinstance(body[key], list):
            body[key].append(value)
        else:
            body[key] = [body[key], value]
    return body


async def read_inbound_body(request: Request) -> Any:
    """
    Read the inbound request body.

    application/json bodies must be a JSON object or array. URL-encoded form
    bodies become an object of their fields. Other content types and empty
    bodies yield an empty object, which is what gets forwarded.

    Raises:
        json.JSONDecodeError: If a JSON body is malformed
        InvalidRequestBody: If a JSON body is a bare string, number, boolean or null
    """
    content_type = request.headers.get("content-type")

    if is_form_content_type(content_type):
        form = await request.form()
        return form_to_dict(form.multi_items())

    if not is_json_content_type(content_type):
        return {}

    raw = await request.body()
    if not raw.strip():
        return {}

    body = json.loads(raw)
    if not isinstance(body, (dict, list)):
        raise InvalidRequestBody(
            f"JSON body must be an object or array, got {type(body).__name__}"
        )
    return body


def serialize_body(body: Any) -> bytes:
    """Compact UTF-8 JSON encoding of the body sent upstream."""
    return json.dumps(body, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def build_upstream_headers(inbound_headers: Mapping[str, str], payload: bytes) -> Dict[str, str]:
    """
    Build headers for the upstream request.

    Only FORWARDED_HEADERS are taken from the inbound request; everything else
    is dropped.

    Args:
        inbound_headers: Case-insensitive inbound header mapping
        payload: Serialized request body

    Returns:
        Headers dict for the upstream request
    """
    headers = {
        "Content-Type": "application/json",
        "Content-Length": str(len(payload)),
    }
    for name in FORWARDED_HEADERS:
        value = inbound_headers.get(name)
        if value is not None:
            headers[name] = value
    return headers


def mirror_headers(upstream_headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Upstream headers as ASGI raw headers, repeated keys preserved."""
    return [(name.lower(), value) for name, value in upstream_headers.raw]


# ============================================================================
# Streaming Response
# ============================================================================

class UpstreamStreamingResponse(StreamingResponse):
    """
    StreamingResponse that owns an upstream httpx response and its client.

    Both are closed once the response finishes, fails or the caller
    disconnects, so an abandoned relay never keeps the upstream open.
    """

    def __init__(self, upstream: httpx.Response, client: httpx.AsyncClient):
        self.upstream = upstream
        self.client = client
        super().__init__(self._relay(), status_code=upstream.status_code)
        self.raw_headers = mirror_headers(upstream.headers)

    async def _relay(self) -> AsyncIterator[bytes]:
        # A transport may hand back a response whose body is already read
        if self.upstream.is_stream_consumed:
            yield self.upstream.content
            return

        sent = 0
        try:
            async for chunk in self.upstream.aiter_raw():
                sent += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            logger.error(
                f"Upstream stream interrupted after {sent} bytes: {e}",
                extra={"upstream_status": self.upstream.status_code, "bytes_sent": sent},
            )
            raise

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()
            await self.upstream.aclose()
            await self.client.aclose()


# ============================================================================
# Forwarder
# ============================================================================

class CopilotForwarder:
    """
    Relays chat requests to the copilot upstream.

    Holds only immutable configuration; every call opens its own
    httpx.AsyncClient so concurrent requests share nothing.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Frozen application settings
            transport: Optional transport override (tests inject httpx.MockTransport)
        """
        self.settings = settings
        self.transport = transport
        self.timeout = httpx.Timeout(
            None,
            connect=settings.UPSTREAM_CONNECT_TIMEOUT,
            read=settings.UPSTREAM_READ_TIMEOUT,
        )

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=self.settings.upstream_verify,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def forward(self, request: Request) -> Response:
        """
        Forward the inbound request upstream and stream the reply back.

        Args:
            request: Inbound FastAPI request

        Returns:
            UpstreamStreamingResponse mirroring the upstream, or a 500
            JSONResponse when the upstream could not be reached

        Raises:
            json.JSONDecodeError: If the inbound JSON body is malformed
            InvalidRequestBody: If the inbound JSON body is not an object or array
        """
        body = await read_inbound_body(request)
        payload = serialize_body(body)

        logger.info(
            f"Proxying request to copilot: {payload.decode('utf-8')}",
            extra={"body": body, "timestamp": utc_timestamp()},
        )

        # Built directly rather than via client.build_request so httpx's default
        # User-Agent/Accept/Accept-Encoding never leak into the upstream call
        upstream_request = httpx.Request(
            "POST",
            self.settings.UPSTREAM_URL,
            content=payload,
            headers=build_upstream_headers(request.headers, payload),
            extensions={"timeout": self.timeout.as_dict()},
        )

        client = self._new_client()
        try:
            upstream = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            return self._connect_failure(e)
        except BaseException:
            await client.aclose()
            raise

        logger.debug(
            "Upstream responded",
            extra={"upstream_status": upstream.status_code},
        )
        return UpstreamStreamingResponse(upstream, client)

    def _connect_failure(self, exc: httpx.HTTPError) -> JSONResponse:
        message = str(exc) or type(exc).__name__
        logger.error(
            f"Error proxying to copilot: {message}",
            extra={"upstream_url": self.settings.UPSTREAM_URL, "exception_type": type(exc).__name__},
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error=UPSTREAM_CONNECT_ERROR, message=message).model_dump(),
        )
