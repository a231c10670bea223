import pytest

from clusterops.builtin import (
    DEFAULT_ADMIN_ROLE_NAME,
    DEFAULT_NS_OWNER,
    DEFAULT_NS_READ_ONLY,
    DEFAULT_USER_ROLE_NAME,
    GLOBAL_ROLES_SET_ID,
    NAMESPACES_SET_ID,
    ROLE_TEMPLATES_SET_ID,
    Namespace,
    PolicyRule,
    bootstrap,
    default_global_roles,
    default_namespace_role_templates,
    default_namespaces,
)


class RecordingApplier:
    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def apply_objects(self, set_id, objects):
        if set_id == self.fail_on:
            raise OSError("boom")
        self.calls.append((set_id, list(objects)))


def test_global_roles_names_and_defaults():
    roles = default_global_roles("pub")
    assert [r.name for r in roles] == [DEFAULT_ADMIN_ROLE_NAME, DEFAULT_USER_ROLE_NAME]
    assert [r.new_default for r in roles] == [False, True]
    assert all(r.builtin for r in roles)


def test_admin_role_allows_everything():
    admin = default_global_roles("pub")[0]
    assert PolicyRule(verbs=("*",), api_groups=("*",), resources=("*",)) in admin.rules
    assert PolicyRule(verbs=("*",), non_resource_urls=("*",)) in admin.rules


def test_user_role_reads_in_public_namespace_only():
    user = default_global_roles("pub")[1]
    assert list(user.namespaced_rules) == ["pub"]
    for rule in user.namespaced_rules["pub"]:
        assert set(rule.verbs) == {"get", "list", "watch"}


def test_user_role_token_verbs():
    user = default_global_roles("pub")[1]
    token_rules = [r for r in user.rules if r.resources == ("tokens",)]
    assert token_rules[0].verbs == ("create", "get", "list", "watch", "delete")


def test_role_templates():
    owner, read_only = default_namespace_role_templates()
    assert (owner.name, read_only.name) == (DEFAULT_NS_OWNER, DEFAULT_NS_READ_ONLY)
    assert owner.new_default and not read_only.new_default
    assert PolicyRule(verbs=("*",), api_groups=("",), resources=("*",)) in owner.rules
    assert all("*" not in r.resources or r.verbs != ("*",) or r.api_groups == ("metrics.k8s.io",)
               for r in read_only.rules)
    assert PolicyRule(verbs=("get",), api_groups=("",), resources=("namespaces",)) in read_only.rules


def test_default_namespaces_label_only_privileged():
    result = default_namespaces(["a", "b", "c"], "b", "enforce")
    assert result == [Namespace("a"), Namespace("b", {"enforce": "privileged"}), Namespace("c")]


def test_bootstrap_applies_in_order():
    applier = RecordingApplier()
    bootstrap(applier, ["x", "y"], "y", "enforce", "x")
    assert [c[0] for c in applier.calls] == [NAMESPACES_SET_ID, GLOBAL_ROLES_SET_ID,
                                            ROLE_TEMPLATES_SET_ID]
    assert [ns.name for ns in applier.calls[0][1]] == ["x", "y"]
    assert [r.name for r in applier.calls[2][1]] == [DEFAULT_NS_OWNER, DEFAULT_NS_READ_ONLY]


def test_bootstrap_wraps_role_errors():
    applier = RecordingApplier(fail_on=GLOBAL_ROLES_SET_ID)
    with pytest.raises(RuntimeError, match="failed to apply built-in GlobalRoles: boom"):
        bootstrap(applier, ["x"], None, "enforce", "x")
    assert [c[0] for c in applier.calls] == [NAMESPACES_SET_ID]


def test_bootstrap_namespace_error_propagates():
    applier = RecordingApplier(fail_on=NAMESPACES_SET_ID)
    with pytest.raises(OSError):
        bootstrap(applier, ["x"], None, "enforce", "x")
    assert applier.calls == []