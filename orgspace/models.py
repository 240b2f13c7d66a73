"""
orgspace/models.py

In-memory records for users, organizations and projects.

Records arrive already loaded; nothing here talks to storage.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Enums
class PermissionLevel(str, Enum):
    admin = "admin"
    write = "write"
    read = "read"
    none = "none"  # computed result only, never stored as a grant


class Visibility(str, Enum):
    internal = "internal"
    private = "private"


GRANTABLE_LEVELS = {PermissionLevel.admin.value, PermissionLevel.write.value, PermissionLevel.read.value}


def _drop_unknown_grants(v):
    """Keep only admin/write/read grants; anything else counts as no grant."""
    if v is None:
        return None
    if not isinstance(v, dict):
        return {}
    return {
        username: level
        for username, level in v.items()
        if isinstance(level, (str, PermissionLevel))
        and (level.value if isinstance(level, PermissionLevel) else level) in GRANTABLE_LEVELS
    }


# Models
class User(BaseModel):
    """A site user. Immutable for the duration of a request."""
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    admin: bool = False
    fname: Optional[str] = None
    lname: Optional[str] = None
    email: Optional[str] = None


class Project(BaseModel):
    id: str
    org: str
    name: str
    archived: bool = False
    visibility: Visibility = Visibility.private
    # username -> level; None means the record carried no permission map
    permissions: Optional[Dict[str, PermissionLevel]] = None

    @field_validator("permissions", mode="before")
    @classmethod
    def drop_unknown_grants(cls, v):
        return _drop_unknown_grants(v)


class Organization(BaseModel):
    id: str
    name: str
    projects: List[Project] = Field(default_factory=list)
    permissions: Optional[Dict[str, PermissionLevel]] = None

    @field_validator("permissions", mode="before")
    @classmethod
    def drop_unknown_grants(cls, v):
        return _drop_unknown_grants(v)


class ProjectCreateRequest(BaseModel):
    """Body for createProject."""
    name: str = Field(..., min_length=1, max_length=200)
    visibility: Visibility = Visibility.private

    @field_validator("name", mode="before")
    @classmethod
    def trim_name(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class UserUpdateRequest(BaseModel):
    """Body for patchUser. Only profile fields are editable."""
    fname: Optional[str] = Field(None, max_length=100)
    lname: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=200)


class PasswordUpdateRequest(BaseModel):
    old_password: str = Field(..., alias="oldPassword")
    password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)
