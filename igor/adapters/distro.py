"""
Distribution detection — read os-release and classify the family.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path

from igor.core.models.distro import DistroFamily, Distribution

logger = logging.getLogger(__name__)

OS_RELEASE_PATHS = (Path("/etc/os-release"), Path("/usr/lib/os-release"))

_FAMILY_IDS: dict[DistroFamily, frozenset[str]] = {
    DistroFamily.DEBIAN: frozenset({
        "debian", "ubuntu", "linuxmint", "mint", "pop", "elementary",
        "zorin", "kali", "raspbian", "neon",
    }),
    DistroFamily.RHEL: frozenset({
        "rhel", "fedora", "centos", "rocky", "almalinux", "alma", "ol", "nobara",
    }),
    DistroFamily.ARCH: frozenset({
        "arch", "manjaro", "endeavouros", "garuda", "artix", "cachyos",
    }),
    DistroFamily.SUSE: frozenset({
        "suse", "opensuse", "opensuse-leap", "opensuse-tumbleweed", "sles", "sled",
    }),
}


def family_for(distro_id: str, id_like: list[str] | None = None) -> DistroFamily:
    """Map an os-release ID (then its ID_LIKE list) to a family."""
    for candidate in [distro_id, *(id_like or [])]:
        candidate = candidate.lower()
        for family, ids in _FAMILY_IDS.items():
            if candidate in ids:
                return family
        if candidate.startswith("opensuse"):
            return DistroFamily.SUSE
    return DistroFamily.UNKNOWN


def parse_os_release(content: str) -> Distribution:
    """Parse os-release ``KEY=value`` content into a Distribution."""
    fields: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        fields[key.strip()] = parts[0] if parts else ""

    distro_id = fields.get("ID", "").lower()
    id_like = fields.get("ID_LIKE", "").lower().split()
    return Distribution(
        id=distro_id,
        name=fields.get("NAME", ""),
        version_id=fields.get("VERSION_ID", ""),
        version_codename=fields.get("VERSION_CODENAME", ""),
        pretty_name=fields.get("PRETTY_NAME", ""),
        id_like=id_like,
        family=family_for(distro_id, id_like),
    )


def detect_distribution(paths: tuple[Path, ...] = OS_RELEASE_PATHS) -> Distribution:
    """Detect the running distribution.

    Returns a Distribution with family ``unknown`` when no os-release
    file can be read.
    """
    for path in paths:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            continue
        distro = parse_os_release(content)
        logger.debug("Detected %s (family=%s) from %s", distro, distro.family, path)
        return distro

    logger.warning("Could not read os-release; distribution family unknown")
    return Distribution()
