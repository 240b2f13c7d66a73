"""
orgspace/response.py

Response formatting and the single send point for every pipeline response.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from orgspace.context import OutgoingResponse, RequestContext
from orgspace.logger import get_logger

logger = get_logger(__name__)

DEFAULT_STATUS = 200
DEFAULT_CONTENT_TYPE = "application/json"


class Transport(Protocol):
    """Hands a finished response to the client."""

    def send(self, response: OutgoingResponse) -> None:
        ...


def serialize(message: Any, content_type: str) -> bytes:
    """
    Encode a payload for the wire.

    JSON content types get JSON unless the payload is already text or bytes.
    """
    if isinstance(message, bytes):
        return message
    if message is None:
        return b""
    if isinstance(message, str):
        return message.encode("utf-8")
    if content_type.startswith("application/json"):
        return json.dumps(message, default=str).encode("utf-8")
    return str(message).encode("utf-8")


def format_response(ctx: RequestContext, status_code: int, content_type: str) -> None:
    """Apply status and content type to the outgoing response."""
    ctx.response.status(status_code)
    ctx.response.set_header("Content-Type", content_type)


def finalize(ctx: RequestContext, transport: Transport) -> OutgoingResponse:
    """
    Format (once) and send the response for a request.

    Formatting runs only while locals.formatted is False and applies the
    defaults: status 200 and application/json when unset. Handing the
    response to the transport is always the last action and happens once
    per request. A response a hook already sent is transmitted as it is,
    without formatting.

    Args:
        ctx: Request whose locals carry the message, status and content type
        transport: Delivers the finished response

    Returns:
        The outgoing response
    """
    response = ctx.response
    if response.transmitted:
        logger.warning("Response already transmitted; skipping", method=ctx.method, path=ctx.path)
        return response

    # A hook that sent its own response keeps its status and body
    if not response.sent:
        locals_ = ctx.locals
        if not locals_.formatted:
            format_response(
                ctx,
                locals_.status_code or DEFAULT_STATUS,
                locals_.content_type or DEFAULT_CONTENT_TYPE,
            )
            locals_.formatted = True
        content_type = response.content_type or DEFAULT_CONTENT_TYPE
        response.send(serialize(locals_.message, content_type))

    if response.status_code is None:
        response.status(DEFAULT_STATUS)
    transport.send(response)
    response.transmitted = True
    return response
