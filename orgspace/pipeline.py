"""
orgspace/pipeline.py

Request pipeline wrapped around every API operation.

Stage order for one request:
    1. resolve acting identity (never fails; falls back to anonymous)
    2. request log (operational log; security log for sensitive endpoints)
    3. disable checks from server.api.userAPI (403, nothing else runs)
    4. pre-hooks, one at a time, in registration order
    5. core operation (fills ctx.locals)
    6. post-hooks, same contract, skipped when a status is already set
    7. finalize + send, then response log

Stages 1-6 share one error boundary: the first failure decides the response
and nothing is transmitted before that decision. A hook may send its own
response (ctx.response.send); the remaining hooks and the core operation
are then skipped and that response is transmitted as it is.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

from orgspace.config import Settings
from orgspace.context import Identity, OutgoingResponse, RequestContext
from orgspace.errors import ConfigurationDisabled, HookFailure, OperationError
from orgspace.hooks import HookFn, HookRegistry, Phase
from orgspace.logger import (
    SecurityLog,
    get_logger,
    log_ip,
    log_response,
    log_route,
    log_security_response,
    log_security_route,
)
from orgspace.response import Transport, finalize, format_response

logger = get_logger(__name__)

Operation = Callable[[RequestContext], Union[None, Awaitable[None]]]
DisableCheck = Callable[[RequestContext, Settings], None]
IdentityResolver = Callable[[RequestContext], Union[Optional[Identity], Awaitable[Optional[Identity]]]]


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async callable and wait for its result."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Disable Checks
# ============================================================================

def disable_user_api(ctx: RequestContext, settings: Settings) -> None:
    """
    Reject the request if server.api.userAPI.<method> is false.

    Raises:
        ConfigurationDisabled: "<METHOD> <path> is disabled."
    """
    if not settings.user_api_enabled(ctx.method):
        raise ConfigurationDisabled(f"{ctx.method.upper()} {ctx.path} is disabled.")


def disable_user_patch_password(ctx: RequestContext, settings: Settings) -> None:
    """
    Reject the request if server.api.userAPI.patchPassword is false.

    Raises:
        ConfigurationDisabled: "PATCH <path> is disabled."
    """
    if settings.server.api.user_api.patch_password is False:
        raise ConfigurationDisabled(f"PATCH {ctx.path} is disabled.")


# ============================================================================
# Endpoint Descriptor
# ============================================================================

@dataclass(frozen=True)
class Endpoint:
    """
    One API operation as the pipeline sees it.

    name is the key into the hook registry (e.g. "createProject").
    """
    name: str
    operation: Operation
    security_sensitive: bool = False
    disable_checks: Tuple[DisableCheck, ...] = ()


# ============================================================================
# Pipeline
# ============================================================================

class RequestPipeline:
    """
    Runs the stages for each request.

    All collaborators are injected; the hook registry is read-only here.
    Requests share no mutable state, so any number may be in flight on one
    event loop.
    """

    def __init__(
        self,
        settings: Settings,
        hooks: HookRegistry,
        security_log: SecurityLog,
        identity_resolver: Optional[IdentityResolver] = None,
    ):
        self.settings = settings
        self.hooks = hooks
        self.security_log = security_log
        self.identity_resolver = identity_resolver

    async def handle(self, ctx: RequestContext, endpoint: Endpoint, transport: Transport) -> OutgoingResponse:
        try:
            await self.resolve_identity(ctx)
            self.log_request(ctx, endpoint)
            self.check_disabled(ctx, endpoint)
            await self.run_pre_hooks(ctx, endpoint)
            # A pre-hook that sent a response ends the request
            if not ctx.response.sent:
                await _call(endpoint.operation, ctx)
                await self.run_post_hooks(ctx, endpoint)
        except HookFailure as e:
            logger.error(
                "Plugin hook failed",
                endpoint=e.endpoint,
                phase=e.phase,
                hook=e.hook_name,
                error=repr(e.cause),
            )
            self.fail(ctx, e.status_code, e.message)
        except OperationError as e:
            logger.info(f"{ctx.method} {ctx.path} failed", status=e.status_code, error=e.message)
            self.fail(ctx, e.status_code, e.message)
        except Exception:
            logger.exception(f"Unhandled error in {endpoint.name}", method=ctx.method, path=ctx.path)
            self.fail(ctx, 500, "Internal Server Error")

        response = finalize(ctx, transport)
        self.log_response(ctx, endpoint)
        return response

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def resolve_identity(self, ctx: RequestContext) -> None:
        if ctx.identity is not None or self.identity_resolver is None:
            return
        try:
            ctx.identity = await _call(self.identity_resolver, ctx)
        except Exception as e:
            logger.warning("Identity resolution failed; continuing as anonymous", path=ctx.path, error=str(e))
            ctx.identity = None

    def log_request(self, ctx: RequestContext, endpoint: Endpoint) -> None:
        log_route(ctx)
        log_ip(ctx)
        if endpoint.security_sensitive:
            log_security_route(ctx, self.security_log)

    def check_disabled(self, ctx: RequestContext, endpoint: Endpoint) -> None:
        for check in endpoint.disable_checks:
            check(ctx, self.settings)

    async def run_pre_hooks(self, ctx: RequestContext, endpoint: Endpoint) -> None:
        await self._run_hooks(ctx, endpoint.name, Phase.pre, self.hooks.hooks_for(endpoint.name).pre)

    async def run_post_hooks(self, ctx: RequestContext, endpoint: Endpoint) -> None:
        # NOTE: a status set by the core operation itself also skips the
        # post-hooks, not only one from an earlier send.
        if ctx.response.status_code is not None or ctx.response.sent:
            logger.debug("Response status already set; skipping post hooks", endpoint=endpoint.name)
            return
        await self._run_hooks(ctx, endpoint.name, Phase.post, self.hooks.hooks_for(endpoint.name).post)

    async def _run_hooks(self, ctx: RequestContext, endpoint_name: str, phase: Phase, hooks: Tuple[HookFn, ...]) -> None:
        for hook in hooks:
            try:
                await _call(hook, ctx)
            except Exception as e:
                raise HookFailure(endpoint_name, phase.value, getattr(hook, "__name__", repr(hook)), e) from e
            if ctx.response.sent:
                logger.debug("Hook sent a response; skipping remaining stages",
                             endpoint=endpoint_name, phase=phase.value, hook=getattr(hook, "__name__", repr(hook)))
                return

    def fail(self, ctx: RequestContext, status_code: int, message: str) -> None:
        """Replace whatever the stages produced with an error response."""
        if ctx.response.sent:
            # The body is final; the error is logged but cannot replace it
            logger.warning("Error after response was sent", path=ctx.path, status=status_code, error=message)
            return
        ctx.locals.message = message
        ctx.locals.status_code = status_code
        ctx.locals.content_type = "text/plain"
        format_response(ctx, status_code, "text/plain")
        ctx.locals.formatted = True

    def log_response(self, ctx: RequestContext, endpoint: Endpoint) -> None:
        log_response(ctx)
        if endpoint.security_sensitive:
            log_security_response(ctx, self.security_log)
