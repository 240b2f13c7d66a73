"""
orgspace/visibility.py

Filters an organization's projects down to what a user may see, and
annotates each entry with what the view layer needs to draw it.

Deciding only: nothing here produces markup.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

from orgspace.models import Organization, Project, User
from orgspace.permissions import can_create_project, is_visible


class CssState(str, Enum):
    normal = "normal"
    grayed_out = "grayed-out"


@dataclass(frozen=True)
class ProjectListing:
    project: Project
    is_admin_view: bool
    css_state: CssState
    href: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.project.model_dump(mode="json"),
            "isAdminView": self.is_admin_view,
            "cssState": self.css_state.value,
            "href": self.href,
        }


def project_href(org: Organization, project: Project) -> str:
    """Landing link for a project: its master branch element tree."""
    return f"/orgs/{org.id}/projects/{project.id}/branches/master/elements"


def filter_projects(user: User, org: Organization) -> List[ProjectListing]:
    """
    Select and annotate the projects a user may see.

    Args:
        user: Acting user
        org: Organization whose projects are listed

    Returns:
        Listings in the organization's project order. Admins get every
        project, archived ones grayed out; non-admins get only visible
        projects, never grayed out.
    """
    listings = []
    for project in org.projects:
        if user.admin:
            css_state = CssState.grayed_out if project.archived else CssState.normal
            listings.append(ProjectListing(project, True, css_state, project_href(org, project)))
        elif is_visible(user, project):
            listings.append(ProjectListing(project, False, CssState.normal, project_href(org, project)))
    return listings


def organization_listing(user: User, org: Organization) -> Dict[str, Any]:
    """Projects view payload: visible projects plus the create affordance."""
    return {
        "org": {"id": org.id, "name": org.name},
        "canCreate": can_create_project(user, org),
        "projects": [listing.to_dict() for listing in filter_projects(user, org)],
    }
