"""Records managed system addon readiness on the running upgrade."""

from __future__ import annotations

import copy
import logging
from typing import Optional

from .resources import (
    ADDON_STATE_COMPLETE,
    ConditionType,
    ManagedAddon,
    ManagedAddonUpgradeStatus,
    Upgrade,
)
from .upgrade_common import (
    SERVER_VERSION_LABEL,
    SYSTEM_ADDON_LABEL,
    SYSTEM_NAMESPACE,
    CommonHandler,
)

logger = logging.getLogger(__name__)


def is_managed_addon_ready(addon: ManagedAddon) -> bool:
    """True if the addon finished successfully and no ready condition is failing."""
    for condition in addon.conditions:
        if condition.type == ConditionType.ADDON_READY.value and condition.status != "True":
            return False
    return (addon.completion_time is not None and addon.succeeded >= 1
            and addon.state == ADDON_STATE_COMPLETE)


class AddonHandler(CommonHandler):
    """Marks system addons complete on the latest upgrade as they become ready."""

    def on_addon_change(self, key: str, addon: Optional[ManagedAddon]) -> Optional[ManagedAddon]:
        if (addon is None or addon.deletion_timestamp is not None or not addon.labels
                or addon.namespace != SYSTEM_NAMESPACE):
            return None

        system_addon = addon.labels.get(SYSTEM_ADDON_LABEL, "")
        version = addon.labels.get(SERVER_VERSION_LABEL, "")
        if not system_addon or not version:
            return addon

        upgrade = self.latest_upgrade("")
        if upgrade is None:
            return addon

        if (ConditionType.UPGRADE_COMPLETED.is_true(upgrade) or not is_managed_addon_ready(addon)
                or version != upgrade.spec.version):
            return addon

        logger.debug("Updating upgrade status for managed addon %s", addon.name)
        self.update_managed_addon_status(addon, upgrade)
        return addon

    def update_managed_addon_status(self, addon: ManagedAddon, upgrade: Upgrade) -> None:
        to_update = copy.deepcopy(upgrade)
        statuses = to_update.status.managed_addon_status or []
        to_update.status.managed_addon_status = [
            ManagedAddonUpgradeStatus(name=addon.name, job_name=addon.job_name, complete=True)
            if status.name == addon.name else status
            for status in statuses
        ]

        if all(status.complete for status in to_update.status.managed_addon_status):
            self.update_ready_cond(to_update, ConditionType.MANAGED_ADDONS_IS_READY,
                                   "All managed system addons are ready")
        elif to_update.status != upgrade.status:
            self.upgrades.update_status(to_update)