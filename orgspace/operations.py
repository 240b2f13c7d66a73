"""
orgspace/operations.py

Core operations served through the request pipeline.

Each operation reads the request from ctx and writes its result to
ctx.locals (message, and optionally status_code / content_type). Errors are
raised as OperationError subclasses and turned into responses by the
pipeline's error boundary.
"""

from __future__ import annotations

from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from orgspace.context import RequestContext
from orgspace.errors import AuthenticationError, BadRequest, NotFound, PermissionDenied
from orgspace.logger import get_logger
from orgspace.models import (
    PasswordUpdateRequest,
    PermissionLevel,
    Project,
    ProjectCreateRequest,
    User,
    UserUpdateRequest,
)
from orgspace.permissions import can_create_project, is_visible
from orgspace.pipeline import Endpoint, disable_user_api, disable_user_patch_password
from orgspace.store import Store
from orgspace.visibility import organization_listing

logger = get_logger(__name__)

BodyT = TypeVar("BodyT", bound=BaseModel)


def public_user(user: User) -> Dict[str, Any]:
    return user.model_dump(mode="json")


def parse_body(ctx: RequestContext, schema: Type[BodyT]) -> BodyT:
    if not isinstance(ctx.body, dict):
        raise BadRequest("Request body must be a JSON object.")
    try:
        return schema.model_validate(ctx.body)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise BadRequest(f"Invalid request body: {fields}")


class Operations:
    """Core operations bound to one in-memory store."""

    def __init__(self, store: Store):
        self.store = store

    def acting_user(self, ctx: RequestContext) -> User:
        identity = ctx.acting_identity
        user = self.store.get_user(identity.id) if identity.id else None
        if user is None:
            raise AuthenticationError("Authentication required.")
        return user

    # ------------------------------------------------------------------
    # Organizations / projects
    # ------------------------------------------------------------------

    def get_org_projects(self, ctx: RequestContext) -> None:
        user = self.acting_user(ctx)
        org = self.store.get_org(ctx.params["orgid"])
        if org is None:
            raise NotFound(f"Organization [{ctx.params['orgid']}] not found.")
        ctx.locals.message = organization_listing(user, org)

    def get_project(self, ctx: RequestContext) -> None:
        user = self.acting_user(ctx)
        project = self.store.get_project(ctx.params["orgid"], ctx.params["projectid"])
        # Invisible projects are reported as missing so their existence does not leak
        if project is None or not is_visible(user, project):
            raise NotFound(f"Project [{ctx.params['projectid']}] not found.")
        ctx.locals.message = project.model_dump(mode="json")

    def create_project(self, ctx: RequestContext) -> None:
        user = self.acting_user(ctx)
        org = self.store.get_org(ctx.params["orgid"])
        if org is None:
            raise NotFound(f"Organization [{ctx.params['orgid']}] not found.")
        if not can_create_project(user, org):
            raise PermissionDenied(f"User [{user.username}] does not have permission to create projects in [{org.id}].")

        project_id = ctx.params["projectid"]
        if self.store.get_project(org.id, project_id) is not None:
            raise BadRequest(f"Project [{project_id}] already exists.")

        request = parse_body(ctx, ProjectCreateRequest)
        project = self.store.add_project(org, Project(
            id=project_id,
            org=org.id,
            name=request.name,
            visibility=request.visibility,
            permissions={user.username: PermissionLevel.admin},
        ))
        logger.info("Project created", org=org.id, project=project.id, by=user.username)
        ctx.locals.message = project.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def whoami(self, ctx: RequestContext) -> None:
        ctx.locals.message = public_user(self.acting_user(ctx))

    def patch_user(self, ctx: RequestContext) -> None:
        user = self.acting_user(ctx)
        target = self.store.find_user(ctx.params["username"])
        if target is None:
            raise NotFound(f"User [{ctx.params['username']}] not found.")
        if not user.admin and user.id != target.id:
            raise PermissionDenied("Only site admins may update other users.")

        changes = parse_body(ctx, UserUpdateRequest).model_dump(exclude_unset=True)
        updated = self.store.replace_user(target.model_copy(update=changes))
        ctx.locals.message = public_user(updated)

    def patch_password(self, ctx: RequestContext) -> None:
        user = self.acting_user(ctx)
        if user.username != ctx.params["username"]:
            raise PermissionDenied("Users may only change their own password.")

        request = parse_body(ctx, PasswordUpdateRequest)
        if request.password != request.confirm_password:
            raise BadRequest("Passwords do not match.")
        if not self.store.check_password(user.username, request.old_password):
            raise AuthenticationError("Old password is incorrect.")

        self.store.set_password(user.username, request.password)
        ctx.locals.message = public_user(user)

    # ------------------------------------------------------------------
    # Endpoint table
    # ------------------------------------------------------------------

    def endpoints(self) -> List[Endpoint]:
        return [
            Endpoint("getOrgProjects", self.get_org_projects),
            Endpoint("getProject", self.get_project),
            Endpoint("createProject", self.create_project),
            Endpoint("whoami", self.whoami),
            Endpoint("patchUser", self.patch_user, disable_checks=(disable_user_api,)),
            Endpoint(
                "patchPassword",
                self.patch_password,
                security_sensitive=True,
                disable_checks=(disable_user_api, disable_user_patch_password),
            ),
        ]
