"""Per-user permission sets."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

NO_PERMISSION = "none"
WILDCARD = "*"


def _normalize(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def permission_matches(held: str, required: str) -> bool:
    """Check one held permission against a required one.

    `*` matches everything; `music.*` matches `music.play` and any deeper
    permission under `music`.
    """
    if held == WILDCARD or held == required:
        return True
    held_parts = held.split(".")
    required_parts = required.split(".")
    for index, required_part in enumerate(required_parts):
        if index >= len(held_parts):
            return False
        if held_parts[index] == WILDCARD:
            return True
        if held_parts[index] != required_part:
            return False
    return False


class PermissionStore:
    """Thread-safe map of user id to granted permissions."""

    def __init__(self, grants: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lock = threading.Lock()
        self._permissions: dict[str, set[str]] = {}
        for user_id, permissions in (grants or {}).items():
            for permission in permissions:
                self.grant(user_id, permission)

    def grant(self, user_id: str, permission: str) -> bool:
        """Grant `permission`; returns False when it was already held."""
        user_key = _normalize(user_id)
        perm = _normalize(permission)
        if user_key is None or perm is None:
            raise ValueError("user id and permission must be non-empty")
        with self._lock:
            held = self._permissions.setdefault(user_key, set())
            if perm in held:
                return False
            held.add(perm)
            return True

    def revoke(self, user_id: str, permission: str) -> bool:
        user_key = _normalize(user_id)
        perm = _normalize(permission)
        if user_key is None or perm is None:
            return False
        with self._lock:
            held = self._permissions.get(user_key)
            if not held or perm not in held:
                return False
            held.discard(perm)
            if not held:
                self._permissions.pop(user_key, None)
            return True

    def has_permission(self, user_id: str, permission: str) -> bool:
        required = _normalize(permission)
        if required is None or required == NO_PERMISSION:
            return True
        with self._lock:
            held = tuple(self._permissions.get(user_id.strip(), ()))
        return any(permission_matches(perm, required) for perm in held)

    def permissions_for(self, user_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._permissions.get(user_id.strip(), ()))
