"""Drives an upgrade through its stages: charts repo, addons, manifests and nodes."""

from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .resources import (
    STATE_COMPLETE,
    STATE_ERROR,
    STATE_UPGRADING,
    ConditionType,
    ManagedAddonUpgradeStatus,
    NotFoundError,
    Plan,
    Upgrade,
    UpgradeJobStatus,
    UpgradeStatus,
)
from .semver import parse_semver
from .upgrade_common import (
    LATEST_UPGRADE_LABEL,
    LLMOS_CRD_CHART_NAME,
    LLMOS_OPERATOR_CHART_NAME,
    OPERATOR_UPGRADE_CHARTS,
    SUC_NAMESPACE,
    SYSTEM_ADDON_LABEL,
    SYSTEM_NAMESPACE,
    UPGRADE_NAME_LABEL,
    VERSION_LABEL,
    CommonHandler,
    agent_plan,
    server_plan,
    upgrade_charts_repo_url,
)
from .upgrade_repo import RepoReconciler

logger = logging.getLogger(__name__)

MSG_WAITING_FOR_ADDONS = "Waiting for managed addons to be validated"
MSG_WAITING_FOR_MANIFEST = "Waiting for HelmChart [{}] upgrade job to be complete"
MSG_WAITING_FOR_NODES = "Waiting for nodes to be upgraded to {}"

_upgrade_lock = threading.Lock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def init_status(upgrade: Upgrade, server_version: str) -> None:
    """Reset the upgrade's status to the start of a new upgrade from ``server_version``."""
    upgrade.status = UpgradeStatus(conditions=[], upgrade_jobs=[], node_statuses={})
    ConditionType.UPGRADE_COMPLETED.set_status(upgrade, "False")
    upgrade.status.previous_version = server_version
    upgrade.status.applied_version = upgrade.spec.version
    upgrade.status.state = STATE_UPGRADING
    upgrade.status.start_time = _now()


def _chart_labels(chart: dict[str, Any]) -> dict[str, str]:
    return (chart.get("metadata") or {}).get("labels") or {}


class UpgradeHandler(CommonHandler):
    """Reconciles upgrade objects.

    ``helm_charts`` provides ``get(namespace, name)`` and ``update(chart)`` on chart
    manifests (dicts with ``metadata``, ``spec`` and ``status``); ``plans`` provides
    ``get(namespace, name)`` (raising NotFoundError), ``create``, ``update``,
    ``list(namespace, selector)`` and ``delete(namespace, name)``; ``addons`` provides
    ``list(namespace, selector)``. ``kubernetes_version`` returns the cluster's
    version and ``server_version`` the running server version.
    """

    def __init__(self, upgrades: Any, helm_charts: Any, plans: Any, deployments: Any,
                 services: Any, addons: Any, kubernetes_version: Callable[[], str],
                 server_version: Callable[[], str], default_registry: str = "",
                 namespace: str = SYSTEM_NAMESPACE) -> None:
        super().__init__(upgrades)
        self.helm_charts = helm_charts
        self.plans = plans
        self.addons = addons
        self.kubernetes_version = kubernetes_version
        self.server_version = server_version
        self.default_registry = default_registry
        self.namespace = namespace
        self.repo = RepoReconciler(upgrades, deployments, services, namespace, default_registry)

    def on_change(self, key: str, upgrade: Optional[Upgrade]) -> Optional[Upgrade]:
        if upgrade is None or upgrade.deletion_timestamp is not None:
            return None

        with _upgrade_lock:
            return self._reconcile(upgrade)

    def _reconcile(self, upgrade: Upgrade) -> Optional[Upgrade]:
        completed = ConditionType.UPGRADE_COMPLETED
        repo_ready = ConditionType.UPGRADE_CHARTS_REPO_READY
        addons_ready = ConditionType.MANAGED_ADDONS_IS_READY
        manifest = ConditionType.MANIFEST_UPGRADE_COMPLETE
        nodes = ConditionType.NODES_UPGRADED

        if completed.is_true(upgrade):
            logger.debug("upgrade is completed, skip processing")
            return None

        to_update = copy.deepcopy(upgrade)

        if completed.get_status(upgrade) == "":
            self.set_latest_upgrade_label(to_update)
            init_status(to_update, self.server_version())
            try:
                version = self.check_kubernetes_version(to_update)
            except Exception as exc:
                to_update.status.previous_kubernetes_version = ""
                return self.update_error_cond(to_update, completed, exc)
            to_update.status.previous_kubernetes_version = version
            return self.upgrades.update_status(to_update)

        if repo_ready.get_status(upgrade) in ("", STATE_ERROR):
            try:
                self.repo.reconcile(to_update)
            except Exception as exc:
                logger.debug("Failed to setup upgrade system charts repo for upgrade %s: %s",
                             upgrade.name, exc)
                return self.update_error_cond(to_update, repo_ready, exc)

        if repo_ready.is_true(upgrade) and (addons_ready.get_status(upgrade) == ""
                                            or upgrade.status.managed_addon_status is None):
            return self.init_addon_status(to_update)

        if repo_ready.is_true(upgrade) and not manifest.is_true(upgrade):
            try:
                self.reconcile_manifest_upgrade(to_update)
            except Exception as exc:
                logger.debug("Failed to reconcile operator manifest upgrade for upgrade %s: %s",
                             upgrade.name, exc)
                return self.update_error_cond(to_update, manifest, exc)

        if (addons_ready.is_true(upgrade) and manifest.is_true(upgrade)
                and nodes.get_status(upgrade) in ("", STATE_ERROR)):
            for plan in (server_plan(to_update, self.default_registry),
                         agent_plan(to_update, self.default_registry)):
                try:
                    self.reconcile_nodes_upgrade_plan(to_update, plan)
                except Exception as exc:
                    return self.update_error_cond(to_update, nodes, exc)

        if (nodes.is_true(upgrade) and manifest.is_true(upgrade)
                and addons_ready.is_true(upgrade) and not completed.is_true(upgrade)):
            to_update.status.state = STATE_COMPLETE
            to_update.status.complete_time = _now()
            return self.update_ready_cond(to_update, completed, "Upgrade completed")

        return upgrade

    def reconcile_nodes_upgrade_plan(self, upgrade: Upgrade, plan: Plan) -> None:
        """Create the node plan, or bring an existing plan's spec up to date."""
        try:
            found = self.plans.get(plan.namespace, plan.name)
        except NotFoundError:
            self.plans.create(plan)
            self.update_upgrading_cond(upgrade, ConditionType.NODES_UPGRADED,
                                       MSG_WAITING_FOR_NODES.format(upgrade.spec.version))
            return

        if plan.spec != found.spec:
            to_update = copy.deepcopy(found)
            to_update.spec = copy.deepcopy(plan.spec)
            self.plans.update(to_update)

    def set_latest_upgrade_label(self, upgrade: Upgrade) -> None:
        """Move the latest-upgrade label from every other upgrade onto ``upgrade``."""
        for other in self.upgrades.list({LATEST_UPGRADE_LABEL: "true"}):
            if other.name == upgrade.name:
                continue
            to_update = copy.deepcopy(other)
            to_update.labels.pop(LATEST_UPGRADE_LABEL, None)
            self.upgrades.update(to_update)

        upgrade.labels[LATEST_UPGRADE_LABEL] = "true"
        self.upgrades.update(upgrade)

    def reconcile_manifest_upgrade(self, upgrade: Upgrade) -> Upgrade:
        """Start the operator chart upgrades, or point the charts at the new version."""
        if ConditionType.MANIFEST_UPGRADE_COMPLETE.get_status(upgrade) == "":
            for name in OPERATOR_UPGRADE_CHARTS:
                upgrade.status.upgrade_jobs.append(UpgradeJobStatus(
                    name=f"helm-install-{name}", helm_chart_name=name, complete=False,
                ))
            message = MSG_WAITING_FOR_MANIFEST.format(", ".join(OPERATOR_UPGRADE_CHARTS))
            return self.update_upgrading_cond(upgrade, ConditionType.MANIFEST_UPGRADE_COMPLETE,
                                              message)

        for chart_name in OPERATOR_UPGRADE_CHARTS:
            try:
                upgrade = self.update_helm_chart(upgrade, chart_name)
            except Exception as exc:
                return self.update_error_cond(upgrade, ConditionType.MANIFEST_UPGRADE_COMPLETE, exc)
        return upgrade

    def update_helm_chart(self, upgrade: Upgrade, chart_name: str) -> Upgrade:
        """Point the chart at the upgrade's version and track its install job."""
        # the operator chart is upgraded only after the CRDs are
        if chart_name == LLMOS_OPERATOR_CHART_NAME:
            for job in upgrade.status.upgrade_jobs:
                if job.helm_chart_name == LLMOS_CRD_CHART_NAME and not job.complete:
                    logger.info("waiting for the %s upgrade job to be complete first",
                                LLMOS_CRD_CHART_NAME)
                    return upgrade

        chart = self.helm_charts.get(self.namespace, chart_name)
        chart_copy = copy.deepcopy(chart)
        spec = chart_copy.get("spec") or {}
        spec["repo"] = upgrade_charts_repo_url(self.namespace)
        spec["chart"] = chart_name
        spec["version"] = upgrade.spec.version
        chart_copy["spec"] = spec
        metadata = chart_copy.get("metadata") or {}
        labels = metadata.get("labels") or {}
        labels[UPGRADE_NAME_LABEL] = upgrade.name
        labels[VERSION_LABEL] = upgrade.spec.version
        metadata["labels"] = labels
        chart_copy["metadata"] = metadata

        if spec == (chart.get("spec") or {}) and labels == _chart_labels(chart):
            return upgrade

        try:
            updated = self.helm_charts.update(chart_copy)
        except Exception as exc:
            logger.debug("Failed to update upgrade chart %s: %s", chart_name, exc)
            raise

        job_name = (updated.get("status") or {}).get("jobName", "")
        updated_name = updated["metadata"]["name"]
        for job in upgrade.status.upgrade_jobs:
            if job.helm_chart_name == chart_name:
                job.name = job_name
                job.helm_chart_name = updated_name
                job.complete = False
                break
        else:
            upgrade.status.upgrade_jobs.append(UpgradeJobStatus(
                name=job_name, helm_chart_name=updated_name, complete=False,
            ))
        return self.upgrades.update_status(upgrade)

    def on_delete(self, key: str, upgrade: Optional[Upgrade]) -> None:
        """Remove the node plans created for a deleted upgrade."""
        if upgrade is None or upgrade.deletion_timestamp is None:
            return None
        for plan in self.plans.list(SUC_NAMESPACE, {UPGRADE_NAME_LABEL: upgrade.name}):
            self.plans.delete(plan.namespace, plan.name)
        return None

    def check_kubernetes_version(self, upgrade: Upgrade) -> str:
        """Return the cluster's Kubernetes version, refusing a downgrade."""
        try:
            version = self.kubernetes_version()
        except Exception as exc:
            raise RuntimeError(f"failed to get system kubernetes version: {exc}") from exc

        target = upgrade.spec.kubernetes_version
        if not target:
            return version

        try:
            current = parse_semver(version)
        except ValueError as exc:
            raise ValueError(f"failed to parse system kubernetes version: {exc}") from exc
        try:
            wanted = parse_semver(target)
        except ValueError as exc:
            raise ValueError(f"failed to parse upgrade kubernetes version: {exc}") from exc

        if wanted < current:
            raise ValueError(
                f"upgrade kubernetes version {target} is less than current version {version}"
            )
        return version

    def init_addon_status(self, upgrade: Upgrade) -> Upgrade:
        """Record every system addon on the upgrade; disabled addons count as complete."""
        addons = self.addons.list(self.namespace, {SYSTEM_ADDON_LABEL: "true"})
        statuses = upgrade.status.managed_addon_status or []
        statuses.extend(
            ManagedAddonUpgradeStatus(
                name=addon.name,
                job_name=addon.job_name,
                disabled=not addon.enabled,
                complete=not addon.enabled,
            )
            for addon in addons
        )
        upgrade.status.managed_addon_status = statuses
        return self.update_upgrading_cond(upgrade, ConditionType.MANAGED_ADDONS_IS_READY,
                                          MSG_WAITING_FOR_ADDONS)