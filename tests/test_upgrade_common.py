import copy
from datetime import datetime, timedelta, timezone

import pytest

from clusterops.resources import (
    STATE_ERROR,
    STATE_PROCESSING,
    STATE_UPGRADING,
    ConditionType,
    Job,
    NotFoundError,
    Upgrade,
    UpgradeSpec,
    UpgradeStatus,
)
from clusterops.upgrade_common import (
    AGENT_COMPONENT,
    KUBE_CONTROL_PLANE_NODE_LABEL,
    LATEST_UPGRADE_LABEL,
    NODE_UPGRADE_IMAGE_NAME,
    SERVER_COMPONENT,
    SUC_NAMESPACE,
    UPGRADE_COMPONENT_LABEL,
    UPGRADE_NAME_LABEL,
    UPGRADE_REPO_NAME,
    CommonHandler,
    agent_plan,
    base_plan,
    default_tolerations,
    format_repo_image,
    server_plan,
    upgrade_charts_repo_url,
    upgrade_job_is_complete_after,
)

T0 = datetime(2020, 1, 1, tzinfo=timezone.utc)


class FakeUpgrades:
    def __init__(self, *items):
        self.items = {u.name: copy.deepcopy(u) for u in items}

    def get(self, name):
        if name not in self.items:
            raise NotFoundError(name)
        return copy.deepcopy(self.items[name])

    def list(self, selector):
        return [copy.deepcopy(u) for u in self.items.values()
                if all(u.labels.get(k) == v for k, v in selector.items())]

    def update(self, obj):
        self.items[obj.name] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    update_status = update


def make_upgrade(name="test-upgrade", latest=True, start=T0):
    labels = {LATEST_UPGRADE_LABEL: "true"} if latest else {}
    return Upgrade(name, labels=labels, spec=UpgradeSpec(version="test-version"),
                   status=UpgradeStatus(start_time=start))


def test_format_repo_image_prefers_explicit_registry():
    assert format_repo_image("reg", "repo", "tag", "fallback") == "reg/repo:tag"
    assert format_repo_image("", "repo", "tag", "fallback") == "fallback/repo:tag"


def test_charts_repo_url_names_service():
    url = upgrade_charts_repo_url("ns")
    assert url.startswith("http://" + UPGRADE_REPO_NAME + ".ns")
    assert url.endswith(".svc")


def test_server_plan_targets_control_plane():
    upgrade = make_upgrade()
    plan = server_plan(upgrade, "docker.io")
    assert plan.name == "test-upgrade-server"
    assert plan.namespace == SUC_NAMESPACE
    assert plan.labels[UPGRADE_COMPONENT_LABEL] == SERVER_COMPONENT
    assert plan.labels[UPGRADE_NAME_LABEL] == upgrade.name
    expression = plan.spec["nodeSelector"]["matchExpressions"][0]
    assert expression["key"] == KUBE_CONTROL_PLANE_NODE_LABEL
    assert expression["operator"] == "In"
    assert plan.spec["upgrade"]["image"] == format_repo_image(
        "", NODE_UPGRADE_IMAGE_NAME, "test-version", "docker.io")


def test_agent_plan_waits_for_server_plan():
    upgrade = make_upgrade()
    plan = agent_plan(upgrade)
    assert plan.labels[UPGRADE_COMPONENT_LABEL] == AGENT_COMPONENT
    assert plan.spec["prepare"]["args"] == ["prepare", server_plan(upgrade).name]
    assert plan.spec["nodeSelector"]["matchExpressions"][0]["operator"] == "DoesNotExist"
    assert plan.name != server_plan(upgrade).name


def test_base_plan_copies_drain():
    upgrade = make_upgrade()
    assert "drain" not in base_plan(upgrade).spec
    upgrade.spec.drain = {"force": True}
    plan = base_plan(upgrade)
    assert plan.spec["drain"] == {"force": True}
    assert plan.spec["jobActiveDeadlineSecs"] == 604800
    assert plan.spec["cordon"] is True


def test_default_tolerations_cover_architectures():
    tolerations = default_tolerations()
    arches = {t["value"] for t in tolerations if t.get("value")}
    assert arches == {"amd64", "arm64", "arm"}
    assert default_tolerations() == tolerations


def test_job_complete_after_start():
    upgrade = make_upgrade(start=T0)
    done = Job("j", succeeded=1, completion_time=T0 + timedelta(seconds=10))
    early = Job("j", succeeded=1, completion_time=T0 - timedelta(seconds=10))
    running = Job("j", active=1)
    assert upgrade_job_is_complete_after(upgrade, done)
    assert not upgrade_job_is_complete_after(upgrade, early)
    assert not upgrade_job_is_complete_after(upgrade, running)


def test_latest_upgrade_lookup():
    handler = CommonHandler(FakeUpgrades())
    assert handler.latest_upgrade("") is None
    with pytest.raises(NotFoundError):
        handler.latest_upgrade("missing")

    handler = CommonHandler(FakeUpgrades(make_upgrade("a"), make_upgrade("b", latest=False)))
    assert handler.latest_upgrade("").name == "a"
    assert handler.latest_upgrade("b").name == "b"


def test_latest_upgrade_rejects_two_latest():
    handler = CommonHandler(FakeUpgrades(make_upgrade("a"), make_upgrade("b")))
    with pytest.raises(RuntimeError, match="expected exactly one latest upgrade"):
        handler.latest_upgrade("")


def test_condition_updates_are_stored():
    store = FakeUpgrades(make_upgrade())
    handler = CommonHandler(store)

    result = handler.update_error_cond(make_upgrade(), ConditionType.NODES_UPGRADED,
                                       RuntimeError("boom"))
    assert result.status.state == STATE_ERROR
    assert store.get("test-upgrade") == result

    result = handler.update_upgrading_cond(result, ConditionType.NODES_UPGRADED, "waiting")
    assert result.status.state == STATE_UPGRADING
    assert ConditionType.NODES_UPGRADED.get_status(result) == STATE_PROCESSING

    result = handler.update_ready_cond(result, ConditionType.NODES_UPGRADED, "done")
    stored = store.get("test-upgrade")
    assert ConditionType.NODES_UPGRADED.is_true(stored)
    assert stored.conditions[0].reason == "Ready"
    assert stored.conditions[0].message == "done"