"""Built-in namespaces, global roles and namespace role templates applied at startup."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

DEFAULT_ADMIN_ROLE_NAME = "admin"
DEFAULT_USER_ROLE_NAME = "user"
DEFAULT_NS_OWNER = "namespace-owner"
DEFAULT_NS_READ_ONLY = "namespace-readonly"

GLOBAL_ROLE_KIND = "GlobalRole"
ROLE_TEMPLATE_KIND = "RoleTemplate"

ENFORCE_PSS_LABEL = "pod-security.kubernetes.io/enforce"

NAMESPACES_SET_ID = "add-default-nss"
GLOBAL_ROLES_SET_ID = "apply-default-global-role-templates"
ROLE_TEMPLATES_SET_ID = "apply-default-ns-role-templates"

_READ = ("get", "list", "watch")
_ALL = ("*",)
_LLMOS_GROUPS = ("ml.llmos.ai", "management.llmos.ai", "ray.io")


@dataclass(frozen=True)
class PolicyRule:
    """One RBAC rule: verbs allowed on resources of API groups, or on URLs."""

    verbs: tuple[str, ...]
    api_groups: tuple[str, ...] = ()
    resources: tuple[str, ...] = ()
    non_resource_urls: tuple[str, ...] = ()


@dataclass
class Role:
    """A global role or a namespace role template.

    ``new_default`` marks a global role given to new users, or a role template
    given to new namespaces.
    """

    name: str
    kind: str
    display_name: str
    builtin: bool = True
    new_default: bool = False
    rules: list[PolicyRule] = field(default_factory=list)
    namespaced_rules: dict[str, list[PolicyRule]] = field(default_factory=dict)


@dataclass
class Namespace:
    name: str
    labels: dict[str, str] = field(default_factory=dict)


def _rule(groups: Iterable[str], resources: Iterable[str], verbs: Iterable[str]) -> PolicyRule:
    return PolicyRule(verbs=tuple(verbs), api_groups=tuple(groups), resources=tuple(resources))


def _cluster_read_rules() -> list[PolicyRule]:
    return [
        _rule([""], ["persistentvolumes"], _READ),
        _rule(["storage.k8s.io"], ["storageclasses"], _READ),
        _rule(["apiregistration.k8s.io"], ["apiservices"], _READ),
        _rule(["metrics.k8s.io"], ["pods"], _ALL),
    ]


def default_global_roles(public_namespace: str) -> list[Role]:
    """The admin and user global roles; users may read in ``public_namespace``."""
    admin = Role(
        name=DEFAULT_ADMIN_ROLE_NAME,
        kind=GLOBAL_ROLE_KIND,
        display_name="Admin",
        new_default=False,
        rules=[
            _rule(_ALL, _ALL, _ALL),
            PolicyRule(verbs=_ALL, non_resource_urls=_ALL),
        ],
    )
    user = Role(
        name=DEFAULT_USER_ROLE_NAME,
        kind=GLOBAL_ROLE_KIND,
        display_name="User",
        new_default=True,
        rules=[
            *_cluster_read_rules(),
            _rule(["management.llmos.ai"], ["users", "settings"], _READ),
            # listing all tokens is filtered by the admin role
            _rule(["management.llmos.ai"], ["tokens"],
                  ["create", "get", "list", "watch", "delete"]),
        ],
        namespaced_rules={
            public_namespace: [
                _rule([""], ["persistentvolumeclaims", "configmaps", "services", "pods", "events"],
                      _READ),
                _rule(_LLMOS_GROUPS, _ALL, _READ),
            ],
        },
    )
    return [admin, user]


def default_namespace_role_templates() -> list[Role]:
    """The namespace owner and read-only role templates."""
    base = _cluster_read_rules()
    owner = Role(
        name=DEFAULT_NS_OWNER,
        kind=ROLE_TEMPLATE_KIND,
        display_name="Namespace Owner",
        new_default=True,
        rules=[
            base[0],
            # all actions on all core resources within the namespace
            _rule([""], _ALL, _ALL),
            *base[1:],
            _rule(_LLMOS_GROUPS, _ALL, _ALL),
        ],
    )
    read_only = Role(
        name=DEFAULT_NS_READ_ONLY,
        kind=ROLE_TEMPLATE_KIND,
        display_name="Namespace Read-Only",
        new_default=False,
        rules=[
            base[0],
            _rule([""], ["namespaces"], ["get"]),
            _rule([""], ["persistentvolumeclaims"], _READ),
            *base[1:],
            _rule(_LLMOS_GROUPS, _ALL, _READ),
        ],
    )
    return [owner, read_only]


def default_namespaces(reserved: Iterable[str], privileged_namespace: Optional[str],
                       enforce_label: str = ENFORCE_PSS_LABEL) -> list[Namespace]:
    """Namespaces to create; ``privileged_namespace`` gets a privileged pod security label."""
    return [
        Namespace(name, {enforce_label: "privileged"} if name == privileged_namespace else {})
        for name in reserved
    ]


def bootstrap(applier: Any, reserved: Iterable[str], privileged_namespace: Optional[str],
              enforce_label: str, public_namespace: str) -> None:
    """Apply the default namespaces, then the global roles, then the role templates.

    ``applier`` provides ``apply_objects(set_id, objects)``.
    """
    applier.apply_objects(NAMESPACES_SET_ID,
                          default_namespaces(reserved, privileged_namespace, enforce_label))
    try:
        applier.apply_objects(GLOBAL_ROLES_SET_ID, default_global_roles(public_namespace))
    except Exception as exc:
        raise RuntimeError(f"failed to apply built-in GlobalRoles: {exc}") from exc
    try:
        applier.apply_objects(ROLE_TEMPLATES_SET_ID, default_namespace_role_templates())
    except Exception as exc:
        raise RuntimeError(f"failed to apply built-in RoleTempaltes: {exc}") from exc