"""Index functions for cached users, tokens and cluster role bindings."""

from __future__ import annotations

from typing import Any, Mapping

USER_NAME_INDEX = "management.llmos.ai/user-username-index"
TOKEN_NAME_INDEX = "management.llmos.ai/token-name-index"
CLUSTER_ROLE_BINDING_NAME_INDEX = "management.llmos.ai/crb-by-role-and-subject-index"


def crb_key(role_name: str, subject: Mapping[str, Any]) -> str:
    """Index key of a binding of ``role_name`` to ``subject``."""
    return f"{role_name}.{subject['kind']}.{subject['name']}"


def index_crb_by_role_and_subject(binding: Mapping[str, Any]) -> list[str]:
    """Keys of a cluster role binding manifest, one per subject.

    One empty key per subject precedes the real keys, as existing index users expect.
    """
    subjects = binding.get("subjects") or []
    role_name = binding["roleRef"]["name"]
    return [""] * len(subjects) + [crb_key(role_name, subject) for subject in subjects]


def index_user_by_username(user: Mapping[str, Any]) -> list[str]:
    return [user["spec"]["username"]]


def index_token_by_name(token: Mapping[str, Any]) -> list[str]:
    return [token["metadata"]["name"]]