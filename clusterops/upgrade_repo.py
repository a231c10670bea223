"""Deploys the chart repository that serves the target version's system charts."""

from __future__ import annotations

import copy
import logging
from typing import Any

from .deployment_controller import deployment_is_ready
from .resources import ConditionType, Deployment, NotFoundError, Upgrade
from .upgrade_common import (
    SYSTEM_CHARTS_IMAGE_NAME,
    SYSTEM_NAMESPACE,
    UPGRADE_COMPONENT_LABEL,
    UPGRADE_NAME_LABEL,
    UPGRADE_REPO_NAME,
    VERSION_LABEL,
    CommonHandler,
    default_tolerations,
    format_repo_image,
)

logger = logging.getLogger(__name__)

PORT_NAME = "http"
DEFAULT_REPO_PORT = 80

MSG_WAITING_FOR_REPO = "Waiting for upgrade repo {} to be ready"


def construct_repo_deployment(upgrade: Upgrade, namespace: str = SYSTEM_NAMESPACE,
                              default_registry: str = "") -> Deployment:
    """Deployment serving the system charts image of the upgrade's version."""
    selector_labels = {UPGRADE_COMPONENT_LABEL: UPGRADE_REPO_NAME}
    probe = {"httpGet": {"path": "/", "port": DEFAULT_REPO_PORT}}
    container = {
        "name": UPGRADE_REPO_NAME,
        "image": format_repo_image(upgrade.spec.registry, SYSTEM_CHARTS_IMAGE_NAME,
                                   upgrade.spec.version, default_registry),
        "ports": [{"containerPort": DEFAULT_REPO_PORT, "name": PORT_NAME, "protocol": "TCP"}],
        "livenessProbe": {**copy.deepcopy(probe), "periodSeconds": 30},
        "readinessProbe": copy.deepcopy(probe),
    }
    return Deployment(
        name=UPGRADE_REPO_NAME,
        namespace=namespace,
        labels={
            UPGRADE_NAME_LABEL: upgrade.name,
            UPGRADE_COMPONENT_LABEL: UPGRADE_REPO_NAME,
            VERSION_LABEL: upgrade.spec.version,
        },
        spec={
            "replicas": 1,
            "selector": {"matchLabels": dict(selector_labels)},
            "template": {
                "metadata": {"labels": dict(selector_labels)},
                "spec": {"containers": [container], "tolerations": default_tolerations()},
            },
        },
    )


def construct_repo_service(upgrade: Upgrade, namespace: str = SYSTEM_NAMESPACE) -> dict[str, Any]:
    """Service manifest exposing the chart repo deployment."""
    return {
        "metadata": {
            "name": UPGRADE_REPO_NAME,
            "namespace": namespace,
            "labels": {
                UPGRADE_NAME_LABEL: upgrade.name,
                UPGRADE_COMPONENT_LABEL: UPGRADE_REPO_NAME,
            },
        },
        "spec": {
            "ports": [{"port": DEFAULT_REPO_PORT, "protocol": "TCP", "targetPort": PORT_NAME}],
            "selector": {UPGRADE_COMPONENT_LABEL: UPGRADE_REPO_NAME},
        },
    }


class RepoReconciler(CommonHandler):
    """Creates and updates the upgrade chart repo and reports its readiness.

    ``deployments`` provides ``get(namespace, name)`` (raising NotFoundError),
    ``create(deployment)`` and ``update(deployment)``; ``services`` provides
    ``get(namespace, name)`` (raising NotFoundError) and ``create(manifest)``.
    """

    def __init__(self, upgrades: Any, deployments: Any, services: Any,
                 namespace: str = SYSTEM_NAMESPACE, default_registry: str = "") -> None:
        super().__init__(upgrades)
        self.deployments = deployments
        self.services = services
        self.namespace = namespace
        self.default_registry = default_registry

    def reconcile(self, upgrade: Upgrade) -> Upgrade:
        new_version = upgrade.spec.version
        cond = ConditionType.UPGRADE_CHARTS_REPO_READY
        repo = construct_repo_deployment(upgrade, self.namespace, self.default_registry)
        try:
            found = self.deployments.get(repo.namespace, repo.name)
        except NotFoundError:
            logger.debug("Creating system charts repo for upgrade %s", upgrade.name)
            try:
                self.deployments.create(repo)
            except Exception as exc:
                return self.update_error_cond(upgrade, cond, exc)
            return self.update_upgrading_cond(upgrade, cond, MSG_WAITING_FOR_REPO.format(new_version))

        try:
            self.reconcile_service(upgrade)
        except Exception as exc:
            logger.debug("Failed to reconcile upgrade service for upgrade %s: %s", upgrade.name, exc)
            return self.update_error_cond(upgrade, cond, exc)

        repo_update = copy.deepcopy(found)
        latest_image = format_repo_image(upgrade.spec.registry, SYSTEM_CHARTS_IMAGE_NAME,
                                         new_version, self.default_registry)
        repo_update.spec["template"]["spec"]["containers"][0]["image"] = latest_image
        if repo_update.spec != found.spec:
            logger.info("Updating upgrade repo image to %s", latest_image)
            self.deployments.update(repo_update)
            return self.update_upgrading_cond(upgrade, cond,
                                              f"Upgrading repo version to {new_version}")

        if deployment_is_ready(repo_update):
            return self.update_ready_cond(upgrade, cond,
                                          f"Chart repo is ready for upgrade {new_version}")
        return upgrade

    def reconcile_service(self, upgrade: Upgrade) -> None:
        service = construct_repo_service(upgrade, self.namespace)
        metadata = service["metadata"]
        try:
            self.services.get(metadata["namespace"], metadata["name"])
        except NotFoundError:
            try:
                self.services.create(service)
            except Exception as exc:
                logger.error("Failed to create upgrade repo service for upgrade %s: %s",
                             upgrade.name, exc)
                raise