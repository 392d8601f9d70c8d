# Overview: Service-layer operations for permissions; role grants plus an injectable TTL cache.

"""
Permission Checking

WHY: Enforce role-based access control. Staff create requests, managers
approve them; nobody gets an action their role does not grant.

DESIGN PRINCIPLES:
- Fail closed: deny by default, require explicit permission grant
- Performance: role permissions cached with a TTL
- The cache is created by the app factory and passed in explicitly; it is
  never consulted inside a unit of work
- Grants and revokes invalidate the cache immediately
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from ..extensions import db
from ..models import Role, RolePermission, User
from ..permissions import DEFAULT_ROLE_PERMISSIONS, DEFAULT_ROLES, PERMISSION_CODES


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


class PermissionCache:
    """
    role_id -> frozenset of permission codes, expiring after ttl_seconds.

    clock is injectable so tests can move time forward.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[int, tuple[float, frozenset[str]]] = {}
        self._lock = threading.Lock()

    def get(self, role_id: int, loader: Callable[[int], set[str]]) -> frozenset[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(role_id)
            if entry is not None and entry[0] > now:
                return entry[1]

        codes = frozenset(loader(role_id))
        with self._lock:
            self._entries[role_id] = (now + self.ttl_seconds, codes)
        return codes

    def invalidate(self, role_id: int | None = None) -> None:
        with self._lock:
            if role_id is None:
                self._entries.clear()
            else:
                self._entries.pop(role_id, None)


def load_role_permissions(role_id: int) -> set[str]:
    rows = db.session.query(RolePermission.permission_code).filter_by(role_id=role_id).all()
    return {code for (code,) in rows}


def get_user_permissions(user: User, cache: PermissionCache | None = None) -> frozenset[str]:
    """Permission codes granted through the user's role (empty when no role)."""
    if user is None or user.role_id is None:
        return frozenset()
    if cache is None:
        return frozenset(load_role_permissions(user.role_id))
    return cache.get(user.role_id, load_role_permissions)


def user_has_permission(user: User, permission_code: str, cache: PermissionCache | None = None) -> bool:
    if user is None or not user.is_active:
        return False
    return permission_code in get_user_permissions(user, cache)


def require_permission(user: User, permission_code: str, cache: PermissionCache | None = None) -> None:
    """Raises PermissionDeniedError unless the user holds permission_code."""
    if not user_has_permission(user, permission_code, cache):
        username = user.username if user else "anonymous"
        raise PermissionDeniedError(f"User {username} lacks permission {permission_code}")


def _get_role(role_name: str) -> Role:
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name!r} not found")
    return role


def grant_permission(role_name: str, permission_code: str, cache: PermissionCache | None = None) -> bool:
    """Grant a permission to a role. Returns False if it was already granted."""
    if permission_code not in PERMISSION_CODES:
        raise ValueError(f"Unknown permission code {permission_code!r}")
    role = _get_role(role_name)

    exists = db.session.query(RolePermission).filter_by(
        role_id=role.id, permission_code=permission_code
    ).first()
    if exists:
        return False

    db.session.add(RolePermission(role_id=role.id, permission_code=permission_code))
    db.session.commit()
    if cache is not None:
        cache.invalidate(role.id)
    return True


def revoke_permission(role_name: str, permission_code: str, cache: PermissionCache | None = None) -> bool:
    """Revoke a permission from a role. Returns False if it was not granted."""
    role = _get_role(role_name)

    grant = db.session.query(RolePermission).filter_by(
        role_id=role.id, permission_code=permission_code
    ).first()
    if not grant:
        return False

    db.session.delete(grant)
    db.session.commit()
    if cache is not None:
        cache.invalidate(role.id)
    return True


def initialize_roles() -> tuple[int, int]:
    """
    Create default roles and their permission grants (idempotent).

    Returns (roles_created, grants_created).
    """
    roles_created = 0
    grants_created = 0

    for name, description in DEFAULT_ROLES.items():
        role = db.session.query(Role).filter_by(name=name).first()
        if not role:
            role = Role(name=name, description=description)
            db.session.add(role)
            db.session.flush()
            roles_created += 1

        existing = load_role_permissions(role.id)
        for code in DEFAULT_ROLE_PERMISSIONS.get(name, []):
            if code in existing:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_code=code))
            grants_created += 1

    db.session.commit()
    return roles_created, grants_created
