"""
Package models — installed packages, removal options, discovery results.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Package(BaseModel):
    """An installed package as reported by the package manager."""

    name: str
    version: str = ""
    architecture: str = ""
    repository: str = ""
    description: str = ""

    def __str__(self) -> str:
        return f"{self.name} ({self.version})" if self.version else self.name


class RemoveOptions(BaseModel):
    """Options passed to ``PackageManager.remove``."""

    purge: bool = False          # remove configuration files too
    auto_remove: bool = True     # drop orphaned dependencies
    no_confirm: bool = True      # never prompt


class DiscoveredPackages(BaseModel):
    """Categorized snapshot of installed vendor packages.

    A package lands in at most one category list; ``all_packages``
    holds every discovered vendor package, sorted, including those no
    category claimed.  Frozen: each discovery call returns a new snapshot.
    """

    model_config = ConfigDict(frozen=True)

    driver_packages: tuple[str, ...] = ()
    driver_version: str = ""
    cuda_packages: tuple[str, ...] = ()
    cuda_version: str = ""
    library_packages: tuple[str, ...] = ()
    utility_packages: tuple[str, ...] = ()
    kernel_module_packages: tuple[str, ...] = ()
    config_packages: tuple[str, ...] = ()
    all_packages: tuple[str, ...] = ()
    total_count: int = 0
    discovered_at: str = Field(default_factory=_now_iso)

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0

    @property
    def has_driver(self) -> bool:
        return len(self.driver_packages) > 0

    @property
    def has_cuda(self) -> bool:
        return len(self.cuda_packages) > 0

    def by_category(self) -> dict[str, list[str]]:
        """Non-empty categories keyed by display name."""
        categories = {
            "driver": self.driver_packages,
            "cuda": self.cuda_packages,
            "library": self.library_packages,
            "utility": self.utility_packages,
            "kernel_module": self.kernel_module_packages,
            "config": self.config_packages,
        }
        return {k: list(v) for k, v in categories.items() if v}
