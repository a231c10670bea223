"""Shared constants, node plan construction and condition updates for upgrades."""

from __future__ import annotations

import copy
from typing import Any, Optional

from .resources import (
    STATE_ERROR,
    STATE_PROCESSING,
    STATE_UPGRADING,
    ConditionType,
    Job,
    Plan,
    Upgrade,
)

SYSTEM_NAMESPACE = "llmos-system"
SUC_NAMESPACE = "system-upgrade"

KUBE_CONTROL_PLANE_NODE_LABEL = "node-role.kubernetes.io/control-plane"
KUBE_ETCD_NODE_LABEL = "node-role.kubernetes.io/etcd"
LLMOS_MANAGED_LABEL = "llmos.ai/managed"
APP_NAME_LABEL = "app.kubernetes.io/name"
APP_VERSION_LABEL = "app.kubernetes.io/version"
SYSTEM_ADDON_LABEL = "llmos.ai/system-addon"
SERVER_VERSION_LABEL = "llmos.ai/server-version"

LABEL_ARCH = "kubernetes.io/arch"
LABEL_CRITICAL_ADDONS_ONLY = "CriticalAddonsOnly"
TAINT_NODE_UNSCHEDULABLE = "node.kubernetes.io/unschedulable"
TAINT_NODE_UNREACHABLE = "node.kubernetes.io/unreachable"

UPGRADE_REPO_NAME = "upgrade-repo"
UPGRADE_SERVICE_ACCOUNT = "system-upgrade"
SYSTEM_CHARTS_IMAGE_NAME = "system-charts-repo"
NODE_UPGRADE_IMAGE_NAME = "llmos-ai/node-upgrade"

SERVER_COMPONENT = "server"
AGENT_COMPONENT = "agent"

UPGRADE_NAME_LABEL = "llmos.ai/upgrade-name"
VERSION_LABEL = "llmos.ai/version"
UPGRADE_COMPONENT_LABEL = "llmos.io/upgrade-component"
LATEST_UPGRADE_LABEL = "llmos.ai/latest-upgrade"

LLMOS_CRD_CHART_NAME = "llmos-crd"
LLMOS_OPERATOR_CHART_NAME = "llmos-operator"
OPERATOR_UPGRADE_CHARTS = (LLMOS_CRD_CHART_NAME, LLMOS_OPERATOR_CHART_NAME)

# keep jobs for 7 days
DEFAULT_TTL_SECONDS_AFTER_FINISHED = 604800


def upgrade_job_is_complete_after(upgrade: Upgrade, job: Job) -> bool:
    """True if ``job`` succeeded after the upgrade started."""
    if job.succeeded != 1 or job.completion_time is None:
        return False
    start = upgrade.status.start_time
    return start is None or job.completion_time > start


def format_repo_image(registry: str, repo: str, tag: str, default_registry: str = "") -> str:
    """Image reference in ``registry``, falling back to ``default_registry``."""
    return f"{registry or default_registry}/{repo}:{tag}"


def upgrade_charts_repo_url(namespace: str = SYSTEM_NAMESPACE) -> str:
    return f"http://{UPGRADE_REPO_NAME}.{namespace}.svc"


def default_tolerations() -> list[dict[str, str]]:
    """Tolerations that let upgrade workloads run on every node."""
    tolerations = [
        {"key": TAINT_NODE_UNSCHEDULABLE, "operator": "Exists", "effect": "NoSchedule"},
        {"key": KUBE_CONTROL_PLANE_NODE_LABEL, "operator": "Exists", "effect": "NoExecute"},
        {"key": KUBE_ETCD_NODE_LABEL, "operator": "Exists", "effect": "NoExecute"},
        {"key": LABEL_CRITICAL_ADDONS_ONLY, "operator": "Exists"},
        {"key": TAINT_NODE_UNREACHABLE, "operator": "Exists", "effect": "NoExecute"},
    ]
    tolerations.extend(
        {"key": LABEL_ARCH, "operator": "Equal", "effect": "NoSchedule", "value": arch}
        for arch in ("amd64", "arm64", "arm")
    )
    return tolerations


def base_plan(upgrade: Upgrade, registry: str = "") -> Plan:
    """Plan shared by server and agent upgrades; ``registry`` is the default image registry."""
    version = upgrade.spec.version
    spec: dict[str, Any] = {
        "concurrency": 1,
        "version": version,
        "jobActiveDeadlineSecs": DEFAULT_TTL_SECONDS_AFTER_FINISHED,
        "nodeSelector": {"matchLabels": {LLMOS_MANAGED_LABEL: "true"}},
        "serviceAccountName": UPGRADE_SERVICE_ACCOUNT,
        "tolerations": default_tolerations(),
        "cordon": True,
        "upgrade": {
            "image": format_repo_image(upgrade.spec.registry, NODE_UPGRADE_IMAGE_NAME,
                                       version, registry),
        },
    }
    if upgrade.spec.drain is not None:
        spec["drain"] = copy.deepcopy(upgrade.spec.drain)
    return Plan(
        name=upgrade.name,
        namespace=SUC_NAMESPACE,
        labels={UPGRADE_NAME_LABEL: upgrade.name, VERSION_LABEL: version},
        spec=spec,
    )


def _server_plan_name(upgrade: Upgrade) -> str:
    return f"{upgrade.name}-server"


def server_plan(upgrade: Upgrade, registry: str = "") -> Plan:
    """Plan that upgrades the control-plane nodes."""
    plan = base_plan(upgrade, registry)
    plan.name = _server_plan_name(upgrade)
    plan.labels[UPGRADE_COMPONENT_LABEL] = SERVER_COMPONENT
    plan.spec["nodeSelector"]["matchExpressions"] = [
        {"key": KUBE_CONTROL_PLANE_NODE_LABEL, "operator": "In", "values": ["true"]},
    ]
    return plan


def agent_plan(upgrade: Upgrade, registry: str = "") -> Plan:
    """Plan that upgrades worker nodes once the server plan has finished."""
    plan = base_plan(upgrade, registry)
    plan.name = f"{upgrade.name}-agent"
    plan.labels[UPGRADE_COMPONENT_LABEL] = AGENT_COMPONENT
    plan.spec["nodeSelector"]["matchExpressions"] = [
        {"key": KUBE_CONTROL_PLANE_NODE_LABEL, "operator": "DoesNotExist"},
    ]
    # the prepare step waits for the server plan to complete
    plan.spec["prepare"] = {"args": ["prepare", _server_plan_name(upgrade)]}
    return plan


class CommonHandler:
    """Upgrade lookups and condition updates shared by the upgrade controllers.

    ``upgrades`` provides ``get(name)`` (raising NotFoundError), ``list(selector)``
    returning objects whose labels contain ``selector``, ``update(obj)`` and
    ``update_status(obj)``.
    """

    def __init__(self, upgrades: Any) -> None:
        self.upgrades = upgrades

    def latest_upgrade(self, name: str = "") -> Optional[Upgrade]:
        """Return the named upgrade, or the one labelled latest when ``name`` is empty."""
        if name:
            return self.upgrades.get(name)
        found = list(self.upgrades.list({LATEST_UPGRADE_LABEL: "true"}))
        if not found:
            return None
        if len(found) > 1:
            raise RuntimeError(f"expected exactly one latest upgrade, got {len(found)}")
        return found[0]

    def update_error_cond(self, upgrade: Upgrade, cond: ConditionType,
                          error: BaseException) -> Upgrade:
        cond.set_error(upgrade, STATE_ERROR, error)
        upgrade.status.state = STATE_ERROR
        return self.upgrades.update_status(upgrade)

    def update_upgrading_cond(self, upgrade: Upgrade, cond: ConditionType,
                              message: str) -> Upgrade:
        cond.set_status(upgrade, STATE_PROCESSING)
        cond.set_reason(upgrade, STATE_PROCESSING)
        cond.set_message(upgrade, message)
        upgrade.status.state = STATE_UPGRADING
        return self.upgrades.update_status(upgrade)

    def update_ready_cond(self, upgrade: Upgrade, cond: ConditionType, message: str) -> Upgrade:
        cond.set_status(upgrade, "True")
        cond.set_reason(upgrade, "Ready")
        cond.set_message(upgrade, message)
        return self.upgrades.update_status(upgrade)