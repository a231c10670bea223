import copy

from clusterops.deployment_controller import DeploymentHandler, deployment_is_ready
from clusterops.resources import (
    STATE_PROCESSING,
    ConditionType,
    Deployment,
    NotFoundError,
    Upgrade,
    UpgradeSpec,
)
from clusterops.upgrade_common import (
    APP_NAME_LABEL,
    APP_VERSION_LABEL,
    LATEST_UPGRADE_LABEL,
    SYSTEM_NAMESPACE,
    UPGRADE_COMPONENT_LABEL,
    UPGRADE_NAME_LABEL,
    UPGRADE_REPO_NAME,
)

RELEASE = "llmos-operator"


class FakeUpgrades:
    def __init__(self, *items):
        self.items = {u.name: copy.deepcopy(u) for u in items}
        self.writes = 0

    def get(self, name):
        if name not in self.items:
            raise NotFoundError(name)
        return copy.deepcopy(self.items[name])

    def list(self, selector):
        return [copy.deepcopy(u) for u in self.items.values()
                if all(u.labels.get(k) == v for k, v in selector.items())]

    def update(self, obj):
        self.writes += 1
        self.items[obj.name] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    update_status = update


class FakeDeployments:
    def __init__(self, *items):
        self.items = list(items)

    def list(self, namespace, selector):
        return [d for d in self.items if d.namespace == namespace
                and all(d.labels.get(k) == v for k, v in selector.items())]


def make_upgrade():
    return Upgrade("up", labels={LATEST_UPGRADE_LABEL: "true"}, spec=UpgradeSpec(version="v1"))


def repo_deployment(ready=True):
    return Deployment(UPGRADE_REPO_NAME, namespace=SYSTEM_NAMESPACE, replicas=1,
                      ready_replicas=1 if ready else 0,
                      labels={UPGRADE_COMPONENT_LABEL: UPGRADE_REPO_NAME,
                              UPGRADE_NAME_LABEL: "up", APP_VERSION_LABEL: "v1"})


def operator_deployment(ready=True, version="v1"):
    return Deployment(RELEASE, namespace=SYSTEM_NAMESPACE, replicas=2,
                      ready_replicas=2 if ready else 1,
                      labels={APP_NAME_LABEL: RELEASE, APP_VERSION_LABEL: version})


def test_deployment_is_ready():
    assert deployment_is_ready(Deployment("d", replicas=3, ready_replicas=3))
    assert not deployment_is_ready(Deployment("d", replicas=3, ready_replicas=2))


def test_unrelated_or_unready_deployments_are_ignored():
    handler = DeploymentHandler(FakeUpgrades(make_upgrade()), FakeDeployments(), RELEASE)
    other = Deployment("web", namespace=SYSTEM_NAMESPACE, labels={APP_NAME_LABEL: "web"})
    assert handler.watch_deployment("web", other) is None
    assert handler.watch_deployment("repo", repo_deployment(ready=False)) is None


def test_missing_upgrade_returns_deployment():
    store = FakeUpgrades()
    handler = DeploymentHandler(store, FakeDeployments(), RELEASE)
    deployment = repo_deployment()
    assert handler.watch_deployment("repo", deployment) is deployment
    assert store.writes == 0


def test_ready_repo_marks_charts_repo_ready():
    store = FakeUpgrades(make_upgrade())
    handler = DeploymentHandler(store, FakeDeployments(), RELEASE)
    handler.watch_deployment("repo", repo_deployment())
    stored = store.get("up")
    assert ConditionType.UPGRADE_CHARTS_REPO_READY.is_true(stored)
    assert UPGRADE_REPO_NAME in stored.conditions[0].message


def test_manifest_not_started_is_not_synced():
    store = FakeUpgrades(make_upgrade())
    deployments = FakeDeployments(operator_deployment())
    handler = DeploymentHandler(store, deployments, RELEASE)
    handler.watch_deployment(RELEASE, operator_deployment())
    assert store.writes == 0


def test_manifest_upgrade_completes_when_all_ready():
    upgrade = make_upgrade()
    ConditionType.MANIFEST_UPGRADE_COMPLETE.set_status(upgrade, STATE_PROCESSING)
    store = FakeUpgrades(upgrade)
    handler = DeploymentHandler(store, FakeDeployments(operator_deployment()), RELEASE)
    handler.watch_deployment(RELEASE, operator_deployment())
    stored = store.get("up")
    assert ConditionType.MANIFEST_UPGRADE_COMPLETE.is_true(stored)
    assert stored.conditions[0].message == "Manifest upgrade is ready"


def test_manifest_waits_for_unready_replicas():
    upgrade = make_upgrade()
    ConditionType.MANIFEST_UPGRADE_COMPLETE.set_status(upgrade, STATE_PROCESSING)
    store = FakeUpgrades(upgrade)
    deployments = FakeDeployments(operator_deployment(ready=False))
    handler = DeploymentHandler(store, deployments, RELEASE)
    handler.sync_manifest_upgrade(operator_deployment(), store.get("up"))
    assert ConditionType.MANIFEST_UPGRADE_COMPLETE.get_status(store.get("up")) == STATE_PROCESSING


def test_version_mismatch_is_ignored():
    upgrade = make_upgrade()
    ConditionType.MANIFEST_UPGRADE_COMPLETE.set_status(upgrade, STATE_PROCESSING)
    store = FakeUpgrades(upgrade)
    handler = DeploymentHandler(store, FakeDeployments(), RELEASE)
    deployment = operator_deployment(version="v0")
    assert handler.watch_deployment(RELEASE, deployment) is deployment
    assert store.writes == 0