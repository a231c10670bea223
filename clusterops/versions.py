"""Discovery of upgradable releases from a remote upgrade-check service."""

from __future__ import annotations

import json
import logging
import math
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field, replace
from fractions import Fraction
from http import HTTPStatus
from typing import Any, Callable, Iterable, Mapping

from .quantity import convert_to_gi, parse_quantity
from .semver import MalformedVersionError, SemVer, parse_semver

logger = logging.getLogger(__name__)

SYNC_INTERVAL = 3600.0
RETRY_MAX = 3
CHECK_URL_LABEL = "llmos.ai/upgrade-check-url"
NVIDIA_GPU_KEY = "nvidia.com/gpu"

EXTRA_INFO_CLUSTER_UID = "clusterUID"
EXTRA_INFO_NODE_COUNT = "nodeCount"
EXTRA_INFO_CPU_COUNT = "cpuCount"
EXTRA_INFO_MEMORY_SIZE = "memorySize"
EXTRA_INFO_NVIDIA_GPU_COUNT = "nvidiaGPUCount"

_RETRY_WAIT_MIN = 1.0
_RETRY_WAIT_MAX = 30.0

_BINARY_SUFFIXES = tuple((suffix, 1024**power) for power, suffix in
                         ((6, "Ei"), (5, "Pi"), (4, "Ti"), (3, "Gi"), (2, "Mi"), (1, "Ki")))
_DECIMAL_SUFFIXES = {18: "E", 15: "P", 12: "T", 9: "G", 6: "M", 3: "k",
                     0: "", -3: "m", -6: "u", -9: "n"}


@dataclass
class VersionSpec:
    """Release details of a version offered for upgrade."""

    release_date: str = ""
    kubernetes_version: str = ""
    min_upgradable_version: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class Version:
    """A release that the cluster may upgrade to; ``name`` is a semantic version."""

    name: str
    spec: VersionSpec = field(default_factory=VersionSpec)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class CheckUpgradeRequest:
    """Body sent to the upgrade-check service."""

    server_version: str
    extra_info: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> bytes:
        document = {"appVersion": self.server_version, "extraInfo": self.extra_info}
        return json.dumps(document, separators=(",", ":")).encode() + b"\n"


@dataclass
class CheckUpgradeResponse:
    """Versions returned by the upgrade-check service."""

    versions: list[Version] = field(default_factory=list)

    @classmethod
    def from_json(cls, payload: bytes | str) -> CheckUpgradeResponse:
        document = json.loads(payload)
        if not isinstance(document, dict):
            raise ValueError("upgrade check response must be a JSON object")
        versions = []
        for item in document.get("versions") or []:
            versions.append(Version(
                name=item.get("name") or "",
                spec=VersionSpec(
                    release_date=item.get("releaseDate") or "",
                    kubernetes_version=item.get("kubernetesVersion") or "",
                    min_upgradable_version=item.get("minUpgradableVersion") or "",
                    tags=list(item.get("tags") or []),
                ),
            ))
        return cls(versions)


def is_dev_version(name: str, tags: Iterable[str]) -> bool:
    """A version is a development build if its name or tags say so."""
    return "dev" in name or "dev" in tags


def can_upgrade_version(current: SemVer, version: Version) -> bool:
    """Decide whether ``version`` is an upgrade target from ``current``."""
    new_version = parse_semver(version.name)
    if version.spec.kubernetes_version:
        parse_semver(version.spec.kubernetes_version)
    minimum = parse_semver(version.spec.min_upgradable_version)

    if is_dev_version(version.name, version.spec.tags):
        return True
    return new_version > current and (
        version.spec.min_upgradable_version == "" or current >= minimum
    )


def _format_quantity(value: Fraction, style: str) -> str:
    if style == "binary":
        if value.denominator == 1 and abs(value) >= 1024:
            number = int(value)
            for suffix, base in _BINARY_SUFFIXES:
                if number % base == 0:
                    return f"{number // base}{suffix}"
            return str(number)
        style = "decimal"

    for exponent in range(18, -10, -3):
        scaled = value / Fraction(10) ** exponent
        if scaled.denominator == 1:
            break
    else:
        exponent, scaled = -9, Fraction(math.ceil(value * 10**9))
    mantissa = int(scaled)
    if mantissa == 0:
        return "0"
    if style == "exponent":
        return f"{mantissa}e{exponent}" if exponent else str(mantissa)
    return f"{mantissa}{_DECIMAL_SUFFIXES[exponent]}"


def _post_json(url: str, body: bytes) -> tuple[int, bytes]:
    last_error: object = None
    for attempt in range(RETRY_MAX + 1):
        if attempt:
            time.sleep(min(_RETRY_WAIT_MIN * 2 ** (attempt - 1), _RETRY_WAIT_MAX))
        request = urllib.request.Request(
            url, data=body, method="POST", headers={"Content-Type": "application/json"}
        )
        try:
            with urllib.request.urlopen(request, timeout=30) as response:
                return response.status, response.read()
        except urllib.error.HTTPError as exc:
            retryable = exc.code == 429 or (exc.code >= 500 and exc.code != 501)
            if not retryable:
                return exc.code, exc.read()
            last_error = f"status code {exc.code}"
        except OSError as exc:
            last_error = exc
    raise ConnectionError(f"POST {url} giving up after {RETRY_MAX + 1} attempt(s): {last_error}")


@dataclass
class VersionSyncer:
    """Keeps the stored set of upgradable versions in line with the check service.

    ``store`` provides ``get(name)`` (returning a Version or None), ``list()``,
    ``create(version)``, ``update(version)`` and ``delete(name)``.
    ``node_capacities`` yields each node's capacity mapping (``cpu``, ``memory``, ...).
    ``post`` sends a JSON body and returns the status code and the response body.
    """

    store: Any
    node_capacities: Callable[[], Iterable[Mapping[str, str]]]
    system_namespace_uid: Callable[[], str]
    server_version: Callable[[], str]
    check_enabled: Callable[[], str]
    check_url: Callable[[], str]
    post: Callable[[str, bytes], tuple[int, bytes]] = _post_json

    def run(self, stop: threading.Event, interval: float = SYNC_INTERVAL) -> None:
        """Sync every ``interval`` seconds until ``stop`` is set."""
        while not stop.wait(interval):
            try:
                self.sync()
            except Exception as exc:  # keep the loop alive on any failure
                logger.warning("failed syncing upgrade versions: %s", exc)

    def cluster_meta_info(self) -> dict[str, str]:
        """Collect cluster size figures reported alongside the check request."""
        nodes = list(self.node_capacities())
        uid = self.system_namespace_uid()

        cpu = memory = gpu = Fraction(0)
        for capacity in nodes:
            cpu += parse_quantity(capacity.get("cpu", "0"))
            memory += parse_quantity(capacity.get("memory", "0"))
            gpu += parse_quantity(capacity.get(NVIDIA_GPU_KEY, "0"))

        info = {
            EXTRA_INFO_CLUSTER_UID: uid,
            EXTRA_INFO_NODE_COUNT: str(len(nodes)),
            EXTRA_INFO_CPU_COUNT: _format_quantity(cpu, "binary"),
            EXTRA_INFO_MEMORY_SIZE: convert_to_gi(memory),
            EXTRA_INFO_NVIDIA_GPU_COUNT: _format_quantity(gpu, "exponent"),
        }
        logger.debug("get cluster info: %s", info)
        return info

    def sync(self) -> None:
        """Query the check service and store the versions it offers."""
        url = self.check_url()
        if self.check_enabled() != "true" or not url:
            logger.debug("upgrade checker is disabled or url is empty, skipping upgrade checker")
            return

        request = CheckUpgradeRequest(self.server_version(), self.cluster_meta_info())
        status, payload = self.post(url, request.to_json())
        if status != HTTPStatus.OK:
            raise RuntimeError(f"invalid upgrade check response, status code: {status}")
        self.sync_new_versions(CheckUpgradeResponse.from_json(payload), url)

    def sync_new_versions(self, response: CheckUpgradeResponse, check_url: str) -> None:
        """Create or update stored versions that can be upgraded to, then prune old ones."""
        current = parse_semver(self.server_version())
        for offered in response.versions:
            candidate = Version(
                name=offered.name,
                spec=replace(offered.spec, tags=list(offered.spec.tags)),
                labels={CHECK_URL_LABEL: check_url},
            )
            try:
                upgradable = can_upgrade_version(current, candidate)
            except MalformedVersionError as exc:
                logger.debug("failed to compare version %s with current version %s: %s",
                             offered.name, current, exc)
                continue
            if not upgradable:
                continue

            found = self.store.get(candidate.name)
            if found is None:
                self.store.create(candidate)
            elif found.spec != candidate.spec:
                self.store.update(replace(found, spec=candidate.spec))

        self.cleanup_versions(current)

    def cleanup_versions(self, current: SemVer) -> None:
        """Delete stored versions that are not newer than ``current``, keeping dev builds."""
        for stored in list(self.store.list()):
            try:
                version = parse_semver(stored.name)
            except MalformedVersionError as exc:
                raise MalformedVersionError(
                    f"failed to parse version {stored.name}: {exc}"
                ) from exc
            if current >= version and not is_dev_version(stored.name, stored.spec.tags):
                logger.info("removing old version %s", stored.name)
                self.store.delete(stored.name)