"""Triggers a version sync when the server-version setting changes."""

from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SERVER_VERSION_SETTING = "server-version"


class SettingHandler:
    """Runs the version syncer whenever the server version setting changes.

    ``version_syncer`` provides ``sync()``; a setting has ``name`` and
    ``deletion_timestamp`` attributes.
    """

    def __init__(self, version_syncer: Any, server_version_name: str = SERVER_VERSION_SETTING) -> None:
        self.version_syncer = version_syncer
        self.server_version_name = server_version_name

    def syncer_on_change(self, key: str, setting: Optional[Any]) -> Optional[Any]:
        if (setting is None or getattr(setting, "deletion_timestamp", None) is not None
                or setting.name != self.server_version_name):
            return setting
        try:
            self.version_syncer.sync()
        except Exception as exc:  # a failed sync must not block setting reconciliation
            logger.error("failed to sync versions: %s", exc)
        return setting