"""Keeps users' labels and status in line with their spec and role bindings.

Users and role template bindings are manifests (dicts) with ``metadata``;
a user has ``spec`` (``username``, ``active``) and ``status`` (``isActive``,
``isAdmin``, ``lastUpdateTime``); a binding has ``roleTemplateRef``
(``kind``, ``name``) and ``subjects`` (``kind``, ``name``).
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .builtin import DEFAULT_ADMIN_ROLE_NAME, GLOBAL_ROLE_KIND
from .resources import NotFoundError

logger = logging.getLogger(__name__)

LABEL_MANAGEMENT_USERNAME = "management.llmos.ai/username"
LABEL_AUTH_USER_ID = "auth.management.llmos.ai/user-id"
TIME_LAYOUT = "%Y-%m-%dT%H:%M:%SZ"

User = dict[str, Any]
Binding = dict[str, Any]


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.setdefault("metadata", {})


def _is_deleting(obj: dict[str, Any]) -> bool:
    return (obj.get("metadata") or {}).get("deletionTimestamp") is not None


def _grants_admin(binding: Binding) -> bool:
    ref = binding.get("roleTemplateRef") or {}
    return ref.get("name") == DEFAULT_ADMIN_ROLE_NAME and ref.get("kind") == GLOBAL_ROLE_KIND


class UserHandler:
    """Reconciles users and their role template bindings.

    ``users`` provides ``get(name)`` (raising NotFoundError), ``update(user)`` and
    ``update_status(user)``; ``bindings`` provides ``list(selector)`` returning the
    bindings whose labels contain ``selector`` and ``delete(name)`` (raising
    NotFoundError).
    """

    def __init__(self, users: Any, bindings: Any) -> None:
        self.users = users
        self.bindings = bindings

    def on_changed(self, key: str, user: Optional[User]) -> Optional[User]:
        """Label the user with its username and mirror ``spec.active`` into status."""
        if user is None or _is_deleting(user):
            return user

        to_update = copy.deepcopy(user)
        labels = _metadata(to_update).get("labels") or {}
        labels[LABEL_MANAGEMENT_USERNAME] = (user.get("spec") or {}).get("username", "")
        _metadata(to_update)["labels"] = labels

        if to_update != user:
            self.users.update(to_update)

        return self._update_status(user, to_update)

    def _update_status(self, user: User, to_update: User) -> Optional[User]:
        status = to_update.setdefault("status", {})
        status["isActive"] = bool((to_update.get("spec") or {}).get("active", False))
        if status != (user.get("status") or {}):
            status["lastUpdateTime"] = datetime.now(timezone.utc).strftime(TIME_LAYOUT)
            return self.users.update_status(to_update)
        return None

    def on_delete(self, key: str, user: Optional[User]) -> None:
        """Remove the role template bindings created for a deleted user."""
        if user is None or not _is_deleting(user):
            return None

        name = _metadata(user).get("name", "")
        for binding in self.bindings.list({LABEL_AUTH_USER_ID: name}):
            try:
                self.bindings.delete(_metadata(binding).get("name", ""))
            except NotFoundError:
                pass
        return None

    def _set_admin(self, binding: Binding, is_admin: bool) -> Binding:
        user = self.find_user_by_binding(binding)
        if user is None:
            return binding
        to_update = copy.deepcopy(user)
        status = to_update.setdefault("status", {})
        if _grants_admin(binding):
            status["isAdmin"] = is_admin
        if status != (user.get("status") or {}):
            self.users.update_status(to_update)
        return binding

    def on_binding_changed(self, key: str, binding: Optional[Binding]) -> Optional[Binding]:
        """Mark the bound user as admin when bound to the admin global role."""
        if binding is None or _is_deleting(binding):
            return None
        return self._set_admin(binding, True)

    def on_binding_deleted(self, key: str, binding: Optional[Binding]) -> Optional[Binding]:
        """Clear the bound user's admin flag when its admin binding is removed."""
        if binding is None or not _is_deleting(binding):
            return None
        return self._set_admin(binding, False)

    def find_user_by_binding(self, binding: Binding) -> Optional[User]:
        """The first user subject of ``binding``, or None when there is none."""
        binding_name = (binding.get("metadata") or {}).get("name", "")
        user_name = next(
            (subject.get("name", "") for subject in binding.get("subjects") or []
             if subject.get("kind") == "User"),
            "",
        )
        if not user_name:
            logger.warning("no user found in roleTemplateBinding %s", binding_name)
            return None
        try:
            return self.users.get(user_name)
        except NotFoundError:
            logger.warning("user %s not found, but it is defined in the roleTemplateBinding %s",
                           user_name, binding_name)
            return None