"""Cluster resource records and condition handling used by the upgrade controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

STATE_ERROR = "Error"
STATE_PROCESSING = "Processing"
STATE_UPGRADING = "Upgrading"
STATE_COMPLETE = "Complete"

ADDON_STATE_COMPLETE = "Complete"


class NotFoundError(LookupError):
    """Raised by a store when the requested object does not exist."""


@dataclass
class Condition:
    """One entry of an object's status conditions."""

    type: str
    status: str = ""
    reason: str = ""
    message: str = ""


class ConditionType(Enum):
    """Known condition types; each reads and writes an object's ``conditions`` list."""

    UPGRADE_COMPLETED = "Completed"
    UPGRADE_CHARTS_REPO_READY = "ChartsRepoReady"
    MANAGED_ADDONS_IS_READY = "ManagedAddonsIsReady"
    MANIFEST_UPGRADE_COMPLETE = "ManifestUpgradeComplete"
    NODES_UPGRADED = "NodesUpgraded"
    PLAN_COMPLETE = "Complete"
    ADDON_READY = "Ready"

    def _find(self, obj: Any) -> Optional[Condition]:
        return next((c for c in obj.conditions if c.type == self.value), None)

    def _find_or_create(self, obj: Any) -> Condition:
        condition = self._find(obj)
        if condition is None:
            condition = Condition(self.value)
            obj.conditions.append(condition)
        return condition

    def get_status(self, obj: Any) -> str:
        """Return the condition's status, or an empty string when it is absent."""
        condition = self._find(obj)
        return condition.status if condition else ""

    def is_true(self, obj: Any) -> bool:
        return self.get_status(obj) == "True"

    def set_status(self, obj: Any, status: str) -> None:
        self._find_or_create(obj).status = status

    def set_reason(self, obj: Any, reason: str) -> None:
        self._find_or_create(obj).reason = reason

    def set_message(self, obj: Any, message: str) -> None:
        self._find_or_create(obj).message = message

    def set_error(self, obj: Any, reason: str, error: Optional[BaseException]) -> None:
        """Mark the condition failed with ``error``, or true when there is no error."""
        condition = self._find_or_create(obj)
        if error is None:
            condition.status, condition.reason, condition.message = "True", "", ""
            return
        condition.status = STATE_ERROR
        condition.reason = reason
        condition.message = str(error)


@dataclass
class UpgradeJobStatus:
    name: str
    helm_chart_name: str
    complete: bool = False
    last_update_time: Optional[datetime] = None


@dataclass
class UpgradePlanStatus:
    name: str
    latest_version: str = ""
    latest_hash: str = ""
    last_update_time: Optional[datetime] = None
    complete: bool = False


@dataclass
class ManagedAddonUpgradeStatus:
    name: str
    job_name: str = ""
    disabled: bool = False
    complete: bool = False


@dataclass
class UpgradeSpec:
    version: str = ""
    kubernetes_version: str = ""
    registry: str = ""
    drain: Optional[dict[str, Any]] = None


@dataclass
class UpgradeStatus:
    conditions: list[Condition] = field(default_factory=list)
    state: str = ""
    previous_version: str = ""
    applied_version: str = ""
    previous_kubernetes_version: str = ""
    start_time: Optional[datetime] = None
    complete_time: Optional[datetime] = None
    upgrade_jobs: list[UpgradeJobStatus] = field(default_factory=list)
    plan_status: Optional[list[UpgradePlanStatus]] = None
    managed_addon_status: Optional[list[ManagedAddonUpgradeStatus]] = None
    node_statuses: dict[str, Any] = field(default_factory=dict)


@dataclass
class Upgrade:
    """A requested cluster upgrade to ``spec.version``."""

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    spec: UpgradeSpec = field(default_factory=UpgradeSpec)
    status: UpgradeStatus = field(default_factory=UpgradeStatus)
    deletion_timestamp: Optional[datetime] = None

    @property
    def conditions(self) -> list[Condition]:
        return self.status.conditions


@dataclass
class Plan:
    """A node upgrade plan; ``spec`` follows the plan manifest layout."""

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)
    conditions: list[Condition] = field(default_factory=list)
    latest_hash: str = ""
    latest_version: str = ""
    deletion_timestamp: Optional[datetime] = None


@dataclass
class Job:
    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    active: int = 0
    succeeded: int = 0
    failed: int = 0
    completion_time: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None


@dataclass
class Deployment:
    """A deployment; ``spec`` follows the deployment manifest layout."""

    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    replicas: int = 0
    ready_replicas: int = 0
    spec: dict[str, Any] = field(default_factory=dict)
    deletion_timestamp: Optional[datetime] = None


@dataclass
class ManagedAddon:
    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    version: str = ""
    job_name: str = ""
    conditions: list[Condition] = field(default_factory=list)
    completion_time: Optional[datetime] = None
    succeeded: int = 0
    state: str = ""
    deletion_timestamp: Optional[datetime] = None