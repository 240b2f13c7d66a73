"""
orgspace/store.py

In-memory users and organizations, loaded once and handed to the app.

There is no persistence layer: records arrive already loaded (from a JSON
seed file or built in code) and live for the process lifetime.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from orgspace.models import Organization, Project, User


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Salted SHA-256, stored as '<salt>$<hex digest>'."""
    salt = salt or secrets.token_hex(8)
    digest = hashlib.sha256(f"{salt}{password}".encode()).hexdigest()
    return f"{salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    salt, _, _ = stored.partition("$")
    return secrets.compare_digest(hash_password(password, salt), stored)


class Store:
    """Organizations and users keyed by id; users also by username."""

    def __init__(self, orgs: Iterable[Organization] = (), users: Iterable[User] = ()):
        self.orgs: Dict[str, Organization] = {org.id: org for org in orgs}
        self.users: Dict[str, User] = {user.id: user for user in users}
        self.passwords: Dict[str, str] = {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Store":
        """
        Build a store from a seed document.

        Expected shape:
            {"users": [{...}, ...], "orgs": [{"id": ..., "projects": [...]}, ...],
             "passwords": {"<username>": "<plain text>"}}
        """
        store = cls(
            orgs=[Organization.model_validate(o) for o in data.get("orgs", [])],
            users=[User.model_validate(u) for u in data.get("users", [])],
        )
        for username, password in data.get("passwords", {}).items():
            store.set_password(username, password)
        return store

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Store":
        return cls.from_dict(json.loads(Path(path).read_text()))

    # Users

    def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    def find_user(self, username: str) -> Optional[User]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    def replace_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def set_password(self, username: str, password: str) -> None:
        self.passwords[username] = hash_password(password)

    def check_password(self, username: str, password: str) -> bool:
        stored = self.passwords.get(username)
        return stored is not None and verify_password(password, stored)

    # Organizations / projects

    def get_org(self, org_id: str) -> Optional[Organization]:
        return self.orgs.get(org_id)

    def get_project(self, org_id: str, project_id: str) -> Optional[Project]:
        org = self.get_org(org_id)
        if org is None:
            return None
        for project in org.projects:
            if project.id == project_id:
                return project
        return None

    def add_project(self, org: Organization, project: Project) -> Project:
        org.projects.append(project)
        return project
