"""
Package discovery — which vendor packages are installed, by category.

Each call queries the package manager afresh and returns a new frozen
DiscoveredPackages snapshot.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from igor.adapters.base import PackageManager
from igor.core.discovery.patterns import (
    Category,
    categorize,
    cuda_version_from,
    driver_version_from,
    is_vendor_package,
)
from igor.core.errors import PackageError
from igor.core.models.distro import DistroFamily, Distribution
from igor.core.models.package import DiscoveredPackages

logger = logging.getLogger(__name__)

_CATEGORY_FIELDS = {
    Category.DRIVER: "driver_packages",
    Category.CUDA: "cuda_packages",
    Category.LIBRARY: "library_packages",
    Category.UTILITY: "utility_packages",
    Category.KERNEL: "kernel_module_packages",
    Category.CONFIG: "config_packages",
}


def filter_vendor_packages(names: list[str]) -> list[str]:
    """Vendor package names from ``names``, sorted."""
    return sorted(n for n in names if is_vendor_package(n))


def categorize_packages(names: list[str], family: DistroFamily) -> DiscoveredPackages:
    """Sort ``names`` into categories and derive versions.

    Unknown-category names appear only in ``all_packages``.
    """
    buckets: dict[str, list[str]] = {f: [] for f in _CATEGORY_FIELDS.values()}
    for name in names:
        category = categorize(name, family)
        if category != Category.UNKNOWN:
            buckets[_CATEGORY_FIELDS[category]].append(name)

    return DiscoveredPackages(
        **{k: tuple(v) for k, v in buckets.items()},
        all_packages=tuple(names),
        total_count=len(names),
        driver_version=driver_version_from(buckets["driver_packages"]),
        cuda_version=cuda_version_from(buckets["cuda_packages"]),
    )


@runtime_checkable
class Discovery(Protocol):
    """What the package-removal step needs from discovery."""

    def discover(self) -> DiscoveredPackages: ...


class PackageDiscovery:
    """Discovery backed by a PackageManager.

    The family comes from ``distro`` when given, otherwise from the
    package manager.
    """

    def __init__(self, package_manager: PackageManager | None, distro: Distribution | None = None):
        self._pm = package_manager
        self._distro = distro

    @property
    def family(self) -> DistroFamily:
        if self._distro is not None:
            return self._distro.family
        if self._pm is not None:
            return self._pm.family
        return DistroFamily.UNKNOWN

    def discover(self) -> DiscoveredPackages:
        """Query installed packages and categorize the vendor ones.

        Raises:
            PackageError: Without a package manager, or when listing fails.
        """
        if self._pm is None:
            raise PackageError("package manager is not configured")
        installed = self._pm.list_installed()
        vendor = filter_vendor_packages([p.name for p in installed])
        result = categorize_packages(vendor, self.family)
        logger.debug(
            "Discovered %d vendor package(s) of %d installed (family=%s)",
            result.total_count, len(installed), self.family,
        )
        return result

    def discover_driver(self) -> tuple[list[str], str]:
        """Driver packages and driver version."""
        found = self.discover()
        return list(found.driver_packages), found.driver_version

    def discover_cuda(self) -> tuple[list[str], str]:
        """Compute toolkit packages and toolkit version."""
        found = self.discover()
        return list(found.cuda_packages), found.cuda_version

    def is_vendor_installed(self) -> bool:
        return self.discover().total_count > 0

    def driver_version(self) -> str:
        return self.discover().driver_version
