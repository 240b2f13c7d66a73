# ---------------------------------------------------------
# orgspace/main.py
# orgspace - organizations, projects and plugin-extensible API
#
# Run: uvicorn orgspace.main:create_app --factory --reload (from repo root)
#
# - FastAPI; every /api route goes through RequestPipeline
# - /api/orgs/{orgid}/projects                 : visible projects for the caller
# - /api/orgs/{orgid}/projects/{projectid}     : get (GET) / create (POST)
# - /api/users/whoami                          : the caller's user record
# - /api/users/{username}                      : update profile (PATCH)
# - /api/users/{username}/password             : update password (PATCH, audited)
# ---------------------------------------------------------

from __future__ import annotations

import json
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from orgspace.auth_context import resolve_identity
from orgspace.config import CORS_ORIGINS, IS_PROD, SEED_PATH, Settings, load_settings
from orgspace.context import OutgoingResponse, RequestContext
from orgspace.hooks import HookRegistry, load_hook_registry
from orgspace.logger import SecurityLog, get_logger, setup_logging
from orgspace.operations import Operations
from orgspace.pipeline import Endpoint, RequestPipeline
from orgspace.store import Store

logger = get_logger(__name__)

# (method, path, endpoint name)
API_ROUTES = [
    ("GET", "/api/orgs/{orgid}/projects", "getOrgProjects"),
    ("GET", "/api/orgs/{orgid}/projects/{projectid}", "getProject"),
    ("POST", "/api/orgs/{orgid}/projects/{projectid}", "createProject"),
    ("GET", "/api/users/whoami", "whoami"),
    ("PATCH", "/api/users/{username}", "patchUser"),
    ("PATCH", "/api/users/{username}/password", "patchPassword"),
]


class StarletteTransport:
    """Turns the pipeline's finished response into a starlette Response."""

    def __init__(self):
        self.response: Optional[Response] = None

    def send(self, response: OutgoingResponse) -> None:
        self.response = Response(
            content=response.body,
            status_code=response.status_code,
            headers=response.headers,
        )


async def build_context(request: Request) -> RequestContext:
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"

    body = None
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            # Left as text; operations that need a JSON object reject it
            body = raw.decode("utf-8", errors="replace")

    return RequestContext(
        method=request.method,
        path=path,
        ip=request.client.host if request.client else None,
        headers={k.lower(): v for k, v in request.headers.items()},
        params=dict(request.path_params),
        body=body,
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[Store] = None,
    hooks: Optional[HookRegistry] = None,
) -> FastAPI:
    """
    Build the application.

    The hook registry is resolved here, once, before any request is served;
    a plugin misconfiguration fails app creation.

    Args:
        settings: Configuration tree (default: load_settings())
        store: Pre-loaded records (default: ORGSPACE_SEED file, else empty)
        hooks: Hook registry (default: resolved from settings)
    """
    settings = settings or load_settings()
    setup_logging(settings)

    if store is None:
        store = Store.from_file(SEED_PATH) if SEED_PATH else Store()

    operations = Operations(store)
    endpoints: Dict[str, Endpoint] = {endpoint.name: endpoint for endpoint in operations.endpoints()}
    if hooks is None:
        hooks = load_hook_registry(settings, endpoints)

    pipeline = RequestPipeline(
        settings,
        hooks,
        SecurityLog(settings.security_log_path),
        identity_resolver=resolve_identity,
    )

    app = FastAPI(title="orgspace", version="0.1")
    app.state.settings = settings
    app.state.store = store
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS if IS_PROD else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def route(endpoint: Endpoint):
        async def handler(request: Request) -> Response:
            ctx = await build_context(request)
            transport = StarletteTransport()
            await pipeline.handle(ctx, endpoint, transport)
            return transport.response

        handler.__name__ = endpoint.name
        return handler

    for method, path, name in API_ROUTES:
        app.add_api_route(path, route(endpoints[name]), methods=[method], name=name)

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    logger.info("orgspace app created", endpoints=len(endpoints), plugins=settings.plugins_enabled)
    return app
