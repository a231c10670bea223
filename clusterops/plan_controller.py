"""Records completed node upgrade plans on their upgrade."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .resources import ConditionType, NotFoundError, Plan, Upgrade, UpgradePlanStatus
from .upgrade_common import (
    AGENT_COMPONENT,
    SUC_NAMESPACE,
    SYSTEM_NAMESPACE,
    UPGRADE_COMPONENT_LABEL,
    UPGRADE_NAME_LABEL,
    CommonHandler,
)

logger = logging.getLogger(__name__)

PLAN_LABEL_PREFIX = "plan.upgrade.cattle.io"


def plan_label_name(plan_name: str) -> str:
    """Node label under which the plan records the hash a node was upgraded with."""
    return f"{PLAN_LABEL_PREFIX}/{plan_name}"


def _matches_expression(labels: Mapping[str, str], expression: Mapping[str, Any]) -> bool:
    key = expression["key"]
    operator = expression["operator"]
    values = expression.get("values") or []
    if operator == "In":
        return key in labels and labels[key] in values
    if operator == "NotIn":
        return key not in labels or labels[key] not in values
    if operator == "Exists":
        return key in labels
    if operator == "DoesNotExist":
        return key not in labels
    raise ValueError(f'"{operator}" is not a valid label selector operator')


def _matches_selector(labels: Mapping[str, str], selector: Mapping[str, Any]) -> bool:
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    return all(_matches_expression(labels, expression)
               for expression in selector.get("matchExpressions") or [])


class PlanHandler(CommonHandler):
    """Syncs completed plans into upgrade status.

    When a server plan completes its status is recorded on the upgrade; when an
    agent plan completes the upgrade's NodesUpgraded condition becomes true.
    ``nodes`` provides ``list()`` yielding each node's label mapping.
    """

    def __init__(self, upgrades: Any, nodes: Any) -> None:
        super().__init__(upgrades)
        self.nodes = nodes

    def _pending_nodes(self, plan: Plan, selector: Mapping[str, Any]) -> list[Mapping[str, str]]:
        not_latest = {
            "key": plan_label_name(plan.name),
            "operator": "NotIn",
            "values": ["disabled", plan.latest_hash],
        }
        node_labels: Iterable[Mapping[str, str]] = self.nodes.list()
        # validate the selector even when there are no nodes
        _matches_selector({}, {**selector, "matchLabels": {}})
        return [labels for labels in node_labels
                if _matches_selector(labels, selector) and _matches_expression(labels, not_latest)]

    def watch_upgrade_plans(self, key: str, plan: Optional[Plan]) -> Optional[Plan]:
        if (plan is None or plan.deletion_timestamp is not None or not plan.labels
                or plan.namespace not in (SUC_NAMESPACE, SYSTEM_NAMESPACE)):
            return None

        upgrade_name = plan.labels.get(UPGRADE_NAME_LABEL, "")
        component = plan.labels.get(UPGRADE_COMPONENT_LABEL, "")
        selector = plan.spec.get("nodeSelector")
        if not upgrade_name or not component or selector is None:
            return None

        if not ConditionType.PLAN_COMPLETE.is_true(plan):
            return None

        if self._pending_nodes(plan, selector):
            return plan

        try:
            upgrade = self.latest_upgrade(upgrade_name)
        except NotFoundError:
            logger.debug("upgrade %s not found, skipping upgrade plan %s", upgrade_name, plan.name)
            return plan
        if upgrade is None:
            return plan

        self.sync_plan_status_to_upgrade(upgrade, plan, component)
        return plan

    def sync_plan_status_to_upgrade(self, upgrade: Upgrade, plan: Plan, component: str) -> None:
        logger.debug("sync upgrade plan %s status to upgrade %s", plan.name, upgrade.name)
        to_update = copy.deepcopy(upgrade)
        if to_update.status.plan_status is None:
            to_update.status.plan_status = []

        plan_status = UpgradePlanStatus(
            name=plan.name,
            latest_version=plan.latest_version,
            latest_hash=plan.latest_hash,
            last_update_time=datetime.now(timezone.utc),
            complete=True,
        )
        statuses = to_update.status.plan_status
        if any(status.name == plan.name for status in statuses):
            to_update.status.plan_status = [
                plan_status if status.name == plan.name else status for status in statuses
            ]
        else:
            statuses.append(plan_status)

        # all nodes are upgraded once the agent plan completes
        if not ConditionType.NODES_UPGRADED.is_true(upgrade) and component == AGENT_COMPONENT:
            message = (f"All nodes upgraded to version {upgrade.spec.version}"
                       f"({upgrade.spec.kubernetes_version})")
            self.update_ready_cond(to_update, ConditionType.NODES_UPGRADED, message)

        self.upgrades.update_status(to_update)