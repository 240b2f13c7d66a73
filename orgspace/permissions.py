"""
orgspace/permissions.py

Project permission and visibility decisions.

Site admins see every project. Everyone else is judged by a fixed, ordered
rule list over (explicit grant, archived, visibility); the first matching
rule wins. Listing code and any other consumer must go through is_visible()
so the decision is never re-derived differently.

Pure Python logic - no FastAPI imports, no storage access.
"""

from __future__ import annotations

from typing import Optional

from orgspace.models import Organization, PermissionLevel, Project, User, Visibility


# ============================================================================
# Level Hierarchy
# ============================================================================

PERMISSION_HIERARCHY = {
    "admin": 3,
    "write": 2,
    "read": 1,
    "none": 0,
}


def level_at_least(level: PermissionLevel, required: PermissionLevel) -> bool:
    """
    Check if a permission level meets or exceeds another.

    Example:
        level_at_least(PermissionLevel.write, PermissionLevel.read) -> True
        level_at_least(PermissionLevel.read, PermissionLevel.admin) -> False
    """
    return PERMISSION_HIERARCHY.get(level.value, 0) >= PERMISSION_HIERARCHY.get(required.value, 0)


# ============================================================================
# Explicit Grants
# ============================================================================

def explicit_grant(user: User, project: Project) -> Optional[PermissionLevel]:
    """
    Return the user's explicit grant on a project, or None.

    A project without a permission map is treated as granting nothing.
    """
    permissions = project.permissions or {}
    return permissions.get(user.username)


def effective_level(user: User, project: Project) -> PermissionLevel:
    """
    Compute a user's effective access level for a project.

    Args:
        user: Acting user
        project: Project record

    Returns:
        admin for site admins (informational; admins bypass visibility checks),
        otherwise the explicit grant, or none when there is no grant.
    """
    if user.admin:
        return PermissionLevel.admin
    return explicit_grant(user, project) or PermissionLevel.none


def is_visible(user: User, project: Project) -> bool:
    """
    Decide whether a project is exposed to a user in listings.

    Rules, evaluated in order (first match wins):
        1. Site admin: visible.
        2. admin grant: visible even when archived.
        3. write/read grant: visible only when not archived.
        4. No grant: visible only when internal and not archived.

    Note the asymmetry: a write grant on an archived project is NOT visible,
    and the grant does not fall through to the internal rule.
    """
    if user.admin:
        return True

    grant = explicit_grant(user, project)
    if grant == PermissionLevel.admin:
        return True
    if grant in (PermissionLevel.write, PermissionLevel.read):
        return not project.archived
    if grant is None:
        return project.visibility == Visibility.internal and not project.archived
    return False


# ============================================================================
# Write Affordances
# ============================================================================

def can_write(user: User, project: Project) -> bool:
    """
    Check if a user may modify a project.

    Site admins always can. Otherwise an admin grant, or a write grant on a
    project that is not archived.
    """
    if user.admin:
        return True
    grant = explicit_grant(user, project)
    if grant == PermissionLevel.admin:
        return True
    return grant == PermissionLevel.write and not project.archived


def can_create_project(user: User, org: Organization) -> bool:
    """Check if a user may create projects in an organization."""
    if user.admin:
        return True
    grant = (org.permissions or {}).get(user.username)
    return grant is not None and level_at_least(grant, PermissionLevel.write)
