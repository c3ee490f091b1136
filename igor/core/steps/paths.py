"""
Configuration path rules — default candidates and injection-safe validation.

Paths end up as arguments of elevated ``cp`` / ``rm`` calls, so every
path is checked before use: absolute, no ``..``, no shell
metacharacters, and under an allowed directory.
"""

from __future__ import annotations

import os

from igor.core.models.config import DEFAULT_ALLOWED_DIRS

BLACKLIST_CONFIG_PATHS = [
    "/etc/modprobe.d/nvidia-blacklists-nouveau.conf",
    "/etc/modprobe.d/blacklist-nouveau.conf",
    "/etc/modprobe.d/blacklist_nouveau.conf",
]

XORG_CONFIG_PATHS = [
    "/etc/X11/xorg.conf.d/20-nvidia.conf",
    "/etc/X11/xorg.conf.d/10-nvidia.conf",
    "/usr/share/X11/xorg.conf.d/nvidia.conf",
]

MODPROBE_CONFIG_PATHS = [
    "/etc/modprobe.d/nvidia.conf",
    "/etc/modprobe.d/nvidia-drm.conf",
    "/etc/modprobe.d/nvidia-graphics-drivers.conf",
]

PERSISTENCE_CONFIG_PATHS = [
    "/etc/nvidia-persistenced.conf",
    "/etc/systemd/system/nvidia-persistenced.service.d/override.conf",
]

DANGEROUS_CHARS = frozenset(";&|`$(){}<>!\n\r'\"")


def is_valid_path(path: str, allowed_dirs: list[str] | None = None) -> bool:
    """Whether ``path`` is safe to hand to an elevated file command."""
    if not path or ".." in path:
        return False
    if any(ch in DANGEROUS_CHARS for ch in path):
        return False
    if not os.path.isabs(path):
        return False
    clean = os.path.normpath(path)
    for allowed in allowed_dirs if allowed_dirs is not None else DEFAULT_ALLOWED_DIRS:
        prefix = allowed.rstrip("/") + "/"
        if clean.startswith(prefix):
            return True
    return False


def backup_path_for(path: str, backup_dir: str) -> str:
    """Backup location of ``path``, preserving its layout under ``backup_dir``."""
    return os.path.join(backup_dir, path.lstrip("/"))
