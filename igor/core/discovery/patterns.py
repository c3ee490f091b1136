"""
Package-name pattern tables for vendor package discovery.

Categories are checked in a fixed order so specific categories win over
the generic driver bucket:

    kernel module → compute toolkit → library → utility → config → driver

Names are lowercased before matching.  A vendor package matching no
category is "unknown": it is still listed in ``all_packages``.
"""

from __future__ import annotations

import re
from enum import StrEnum

from igor.core.models.distro import DistroFamily


class Category(StrEnum):
    KERNEL = "kernel_module"
    CUDA = "cuda"
    LIBRARY = "library"
    UTILITY = "utility"
    CONFIG = "config"
    DRIVER = "driver"
    UNKNOWN = "unknown"


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) for p in patterns)


VENDOR_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"^nvidia",
    r"^libnvidia",
    r"^cuda",
    r"^libcuda",
    r"^libcudnn",
    r"^libnccl",
    r"^cudnn",
    r"^nccl",
    r"^kmod-nvidia",
    r"^akmod-nvidia",
    r"^dkms-nvidia",
    r"^xorg-x11-drv-nvidia",
    r"^x11-video-nvidia",
))

CONFIG_PATTERNS = _compile(r"nvidia.*config", r"nvidia.*prime")

_D, _R, _A, _S = DistroFamily.DEBIAN, DistroFamily.RHEL, DistroFamily.ARCH, DistroFamily.SUSE

DRIVER_PATTERNS = {
    _D: _compile(r"^nvidia-driver", r"^nvidia-\d+-driver", r"^libnvidia-"),
    _R: _compile(r"^nvidia-driver", r"^kmod-nvidia", r"^akmod-nvidia", r"^xorg-x11-drv-nvidia"),
    _A: _compile(r"^nvidia$", r"^nvidia-lts$", r"^nvidia-open$", r"^nvidia-open-dkms$",
                 r"^lib32-nvidia-utils"),
    _S: _compile(r"^nvidia-driver-g06", r"^nvidia-video-g06", r"^x11-video-nvidiag06"),
}
DEFAULT_DRIVER_PATTERNS = _compile(r"^nvidia-driver", r"^nvidia.*driver")

CUDA_PATTERNS = {
    _D: _compile(r"^cuda-", r"^nvidia-cuda-", r"^cuda-toolkit", r"^libcuda"),
    _R: _compile(r"^cuda-", r"^nvidia-cuda-"),
    _A: _compile(r"^cuda$", r"^cuda-tools$"),
    _S: _compile(r"^cuda-"),
}
DEFAULT_CUDA_PATTERNS = _compile(r"^cuda")

LIBRARY_PATTERNS = {
    _D: _compile(r"^libcudnn", r"^libnccl"),
    _R: _compile(r"^cudnn", r"^nccl", r"^libcudnn", r"^libnccl"),
    _A: _compile(r"^cudnn$", r"^nccl$"),
    _S: _compile(r"^libcudnn"),
}
DEFAULT_LIBRARY_PATTERNS = _compile(r"cudnn", r"nccl")

UTILITY_PATTERNS = {
    _D: _compile(r"^nvidia-settings$", r"^nvidia-utils-", r"^nvidia-smi$"),
    _R: _compile(r"^nvidia-settings$", r"^nvidia-xconfig$"),
    _A: _compile(r"^nvidia-settings$", r"^nvidia-utils$"),
    _S: _compile(r"^nvidia-settings$"),
}
DEFAULT_UTILITY_PATTERNS = _compile(r"nvidia-settings", r"nvidia-utils")

KERNEL_PATTERNS = {
    _D: _compile(r"^nvidia-dkms", r"^nvidia-kernel-"),
    _R: _compile(r"^nvidia-kmod$", r"^dkms-nvidia", r"^kmod-nvidia", r"^akmod-nvidia"),
    _A: _compile(r"^nvidia-dkms$"),
    _S: _compile(r"^nvidia-gfxg06-kmp-"),
}
DEFAULT_KERNEL_PATTERNS = _compile(r"nvidia-dkms", r"nvidia-kmod", r"nvidia-kernel")

# Version heuristics: per package in list order, first pattern to match wins.
DRIVER_VERSION_PATTERNS = _compile(
    r"nvidia-driver-(\d+)",
    r"nvidia-(\d+)-driver",
    r"nvidia-utils-(\d+)",
    r"libnvidia-[a-z]+-(\d+)",
    r"xorg-x11-drv-nvidia-?(\d+)",
    r"nvidia-driver-G\d+-kmp-.*?(\d+)",
)

CUDA_VERSION_PATTERNS = _compile(
    r"cuda-toolkit-(\d+)-(\d+)",
    r"cuda-(\d+)-(\d+)",
    r"cuda-toolkit-(\d+)\.(\d+)",
    r"^cuda-(\d+)\.(\d+)",
    r"cuda-runtime-(\d+)-(\d+)",
    r"cuda-libraries-(\d+)-(\d+)",
)

# Checked in this order; first category to match wins.
_CATEGORY_TABLES = (
    (Category.KERNEL, KERNEL_PATTERNS, DEFAULT_KERNEL_PATTERNS),
    (Category.CUDA, CUDA_PATTERNS, DEFAULT_CUDA_PATTERNS),
    (Category.LIBRARY, LIBRARY_PATTERNS, DEFAULT_LIBRARY_PATTERNS),
    (Category.UTILITY, UTILITY_PATTERNS, DEFAULT_UTILITY_PATTERNS),
    (Category.CONFIG, {}, CONFIG_PATTERNS),
    (Category.DRIVER, DRIVER_PATTERNS, DEFAULT_DRIVER_PATTERNS),
)


def _any_match(patterns: tuple[re.Pattern[str], ...], name: str) -> bool:
    return any(p.search(name) for p in patterns)


def is_vendor_package(name: str) -> bool:
    return _any_match(VENDOR_PATTERNS, name)


def categorize(name: str, family: DistroFamily) -> Category:
    """Category of one package name for ``family``."""
    lowered = name.lower()
    for category, table, default in _CATEGORY_TABLES:
        if _any_match(table.get(family, default), lowered):
            return category
    return Category.UNKNOWN


def driver_version_from(packages: list[str] | tuple[str, ...]) -> str:
    for pkg in packages:
        for pattern in DRIVER_VERSION_PATTERNS:
            m = pattern.search(pkg)
            if m:
                return m.group(1)
    return ""


def cuda_version_from(packages: list[str] | tuple[str, ...]) -> str:
    """Compute toolkit version as ``major.minor``."""
    for pkg in packages:
        for pattern in CUDA_VERSION_PATTERNS:
            m = pattern.search(pkg)
            if m:
                return f"{m.group(1)}.{m.group(2)}"
    return ""
