"""
Distribution model — which Linux family the host belongs to.

The family decides the package-name pattern tables used by discovery
and the boot-image tool used by driver restoration.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class DistroFamily(StrEnum):
    """Linux distribution families igor knows how to handle."""

    DEBIAN = "debian"
    RHEL = "rhel"
    ARCH = "arch"
    SUSE = "suse"
    UNKNOWN = "unknown"


class Distribution(BaseModel):
    """A detected Linux distribution (from /etc/os-release)."""

    id: str = ""
    name: str = ""
    version_id: str = ""
    version_codename: str = ""
    pretty_name: str = ""
    id_like: list[str] = Field(default_factory=list)
    family: DistroFamily = DistroFamily.UNKNOWN

    @property
    def major_version(self) -> str:
        """Leading component of VERSION_ID (``"22.04"`` → ``"22"``)."""
        for sep in (".", "-", "_"):
            idx = self.version_id.find(sep)
            if idx > 0:
                return self.version_id[:idx]
        return self.version_id

    def __str__(self) -> str:
        if self.pretty_name:
            return self.pretty_name
        if self.name:
            return f"{self.name} {self.version_id}".strip()
        return self.id or "Unknown Distribution"
