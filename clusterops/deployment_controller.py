"""Watches upgrade-related deployments and advances upgrade conditions when they are ready."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .resources import ConditionType, Deployment, Upgrade
from .upgrade_common import (
    APP_NAME_LABEL,
    APP_VERSION_LABEL,
    SYSTEM_NAMESPACE,
    UPGRADE_COMPONENT_LABEL,
    UPGRADE_NAME_LABEL,
    UPGRADE_REPO_NAME,
    CommonHandler,
)

logger = logging.getLogger(__name__)


def deployment_is_ready(deployment: Deployment) -> bool:
    return deployment.ready_replicas == deployment.replicas


class DeploymentHandler(CommonHandler):
    """Syncs the upgrade repo and operator manifest deployments into upgrade status.

    ``deployments`` provides ``list(namespace, selector)``.
    """

    def __init__(self, upgrades: Any, deployments: Any, release_name: str) -> None:
        super().__init__(upgrades)
        self.deployments = deployments
        self.release_name = release_name

    def watch_deployment(self, key: str, deployment: Optional[Deployment]) -> Optional[Deployment]:
        if deployment is None or deployment.deletion_timestamp is not None:
            return None
        if not deployment.labels or deployment.namespace != SYSTEM_NAMESPACE:
            return None

        component = deployment.labels.get(UPGRADE_COMPONENT_LABEL, "")
        app_name = deployment.labels.get(APP_NAME_LABEL, "")
        app_version = deployment.labels.get(APP_VERSION_LABEL, "")
        upgrade_name = deployment.labels.get(UPGRADE_NAME_LABEL, "")

        if not deployment_is_ready(deployment) or (not component and app_name != self.release_name):
            return None

        try:
            upgrade = self.latest_upgrade(upgrade_name)
        except Exception as exc:  # any lookup failure means there is nothing to sync
            logger.debug("upgrade lookup failed: %s", exc)
            upgrade = None
        if upgrade is None:
            logger.info("No upgrade found for deployment %s/%s",
                        deployment.namespace, deployment.name)
            return deployment

        if ConditionType.UPGRADE_COMPLETED.is_true(upgrade) or upgrade.spec.version != app_version:
            return deployment

        if component == UPGRADE_REPO_NAME:
            self.sync_upgrade_repo_status(deployment, upgrade)

        if app_name == self.release_name:
            self.sync_manifest_upgrade(deployment, upgrade)
        return deployment

    def sync_upgrade_repo_status(self, deployment: Deployment, upgrade: Upgrade) -> None:
        logger.debug("syncing upgrade repo status for upgrade %s", upgrade.name)
        message = f"upgrade repo {UPGRADE_REPO_NAME}({upgrade.spec.version}) is ready"
        self.update_ready_cond(upgrade, ConditionType.UPGRADE_CHARTS_REPO_READY, message)

    def sync_manifest_upgrade(self, deployment: Deployment, upgrade: Upgrade) -> None:
        # only sync once the upgrade controller has started the manifest upgrade
        if ConditionType.MANIFEST_UPGRADE_COMPLETE.get_status(upgrade) == "":
            return
        selector = {APP_NAME_LABEL: self.release_name, APP_VERSION_LABEL: upgrade.spec.version}
        chart_version = deployment.labels.get(APP_VERSION_LABEL, "")
        for manifest in self.deployments.list(SYSTEM_NAMESPACE, selector):
            if not deployment_is_ready(manifest) or chart_version != upgrade.spec.version:
                return
        self.update_ready_cond(upgrade, ConditionType.MANIFEST_UPGRADE_COMPLETE,
                               "Manifest upgrade is ready")