"""Locating the dashboard index and assets and the API UI script locations."""

from __future__ import annotations

import logging
import os
import ssl
import threading
import urllib.request
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)

JS_PATH = "/api-ui/ui.min.js"
CSS_PATH = "/api-ui/ui.min.css"
DASHBOARD_PREFIX = "/dashboard"


class UISource(str, Enum):
    AUTO = "auto"
    BUNDLE = "bundle"
    EXTERNAL = "external"


def _bundled(source: str, is_release: bool) -> bool:
    if source == UISource.AUTO.value:
        return is_release
    return source != UISource.EXTERNAL.value


def js_url(source: str, is_release: bool) -> str:
    """Path of the bundled API UI script, or empty when an external UI is used."""
    return JS_PATH if _bundled(source, is_release) else ""


def css_url(source: str, is_release: bool) -> str:
    """Path of the bundled API UI stylesheet, or empty when an external UI is used."""
    return CSS_PATH if _bundled(source, is_release) else ""


def _fetch_insecure(url: str) -> bytes:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    with urllib.request.urlopen(url, context=context) as response:
        return response.read()


class UIHandler:
    """Decides where the dashboard is served from.

    The settings are callables read on every use; ``fetch`` retrieves a URL's body.
    """

    def __init__(self, index_setting: Callable[[], str], path_setting: Callable[[], str],
                 source_setting: Callable[[], str], is_release: Callable[[], bool],
                 fetch: Callable[[str], bytes] = _fetch_insecure) -> None:
        self.index_setting = index_setting
        self.path_setting = path_setting
        self.source_setting = source_setting
        self.is_release = is_release
        self.fetch = fetch
        self._lock = threading.Lock()
        self._download_checked = False
        self._download_success = False

    def can_download(self, url: str) -> bool:
        """Try fetching ``url`` once; later calls return the first result."""
        with self._lock:
            if not self._download_checked:
                self._download_checked = True
                try:
                    self.fetch(url)
                    self._download_success = True
                except Exception:
                    logger.error("Failed to download %s, falling back to packaged UI", url)
            return self._download_success

    def index_location(self) -> tuple[str, bool]:
        """Return the index location and whether it is a URL rather than a directory."""
        source = self.source_setting()
        if source == UISource.AUTO.value:
            if self.is_release():
                return self.path_setting(), False
            if self.can_download(self.index_setting()):
                return self.index_setting(), True
            return self.path_setting(), False
        if source == UISource.BUNDLE.value:
            return self.path_setting(), False
        return self.index_setting(), True

    def index_content(self) -> bytes:
        """Body of the dashboard index page."""
        location, is_url = self.index_location()
        if is_url:
            return self.fetch(location)
        with open(os.path.join(location, "index.html"), "rb") as index:
            return index.read()

    def asset_path(self, request_path: str) -> Optional[str]:
        """Local file for a dashboard request path, or None to serve the index instead."""
        if request_path.startswith(DASHBOARD_PREFIX):
            request_path = request_path[len(DASHBOARD_PREFIX):]
        root = os.path.abspath(self.path_setting())
        relative = os.path.normpath("/" + request_path).lstrip("/")
        candidate = os.path.join(root, relative) if relative and relative != "." else root
        if os.path.commonpath([root, candidate]) != root or not os.path.exists(candidate):
            return None
        return candidate