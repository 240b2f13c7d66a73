"""
orgspace/context.py

Per-request state threaded through every pipeline stage.

A RequestContext is created by the HTTP adapter (or a test), handed to
RequestPipeline.handle(), and discarded once the response is sent. Nothing
in it is shared between requests.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Identity:
    """Acting identity supplied by the identity source."""
    id: Optional[str] = None
    username: Optional[str] = None

    @property
    def display(self) -> str:
        return self.id or self.username or "anonymous"


ANONYMOUS = Identity()


@dataclass
class ResponseLocals:
    """
    Values the core operation hands to the response finalizer.

    formatted flips False -> True at most once per request.
    """
    message: Any = None
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    formatted: bool = False


class ResponseAlreadySent(RuntimeError):
    pass


@dataclass
class OutgoingResponse:
    """
    The response under construction.

    status_code stays None until a stage sets it explicitly; the post-hook
    stage uses that to tell whether a response is already in flight.

    sent means the body is final (a hook or the finalizer called send());
    transmitted means the transport has delivered it to the client.
    """
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    sent: bool = False
    transmitted: bool = False

    def status(self, code: int) -> "OutgoingResponse":
        self.status_code = code
        return self

    def set_header(self, name: str, value: str) -> "OutgoingResponse":
        self.headers[name.lower()] = value
        return self

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    def send(self, body: bytes) -> None:
        if self.sent:
            raise ResponseAlreadySent("Response body already sent")
        self.body = body
        self.sent = True


@dataclass
class RequestContext:
    method: str
    path: str
    identity: Optional[Identity] = None
    ip: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    locals: ResponseLocals = field(default_factory=ResponseLocals)
    response: OutgoingResponse = field(default_factory=OutgoingResponse)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def acting_identity(self) -> Identity:
        return self.identity or ANONYMOUS

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000
