"""
Privilege elevation — turn a command into its root-running form.

Detection order for the elevation tool: sudo, pkexec, doas.  sudo is
always invoked non-interactively (``-n``); igor never prompts for or
handles passwords.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable, Mapping
from enum import StrEnum

from igor.core.errors import PrivilegeError

logger = logging.getLogger(__name__)

SAFE_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

# Loader and resolver variables that can hijack a root process
_DANGEROUS_ENV = frozenset({
    "LD_PRELOAD", "LD_LIBRARY_PATH", "LD_AUDIT", "LD_ORIGIN_PATH",
    "LD_PROFILE", "LD_USE_LOAD_BIAS", "LD_DEBUG", "LD_DEBUG_OUTPUT",
    "LD_DYNAMIC_WEAK", "LD_SHOW_AUXV", "LD_BIND_NOW", "LD_BIND_NOT",
    "GCONV_PATH", "GETCONF_DIR", "HOSTALIASES", "LOCALDOMAIN", "LOCPATH",
    "MALLOC_TRACE", "NIS_PATH", "NLSPATH", "RESOLV_HOST_CONF",
    "RES_OPTIONS", "TMPDIR", "TZDIR",
})


class ElevationMethod(StrEnum):
    NONE = "none"
    SUDO = "sudo"
    PKEXEC = "pkexec"
    DOAS = "doas"


class PrivilegeManager:
    """Detects root and the available elevation tool.

    Args:
        is_root: Override root detection (default: ``os.geteuid() == 0``).
        which: Tool lookup function (default: ``shutil.which``).
    """

    def __init__(
        self,
        is_root: bool | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self._is_root = os.geteuid() == 0 if is_root is None else is_root
        self._method = ElevationMethod.NONE
        self._tool_path = ""
        for method in (ElevationMethod.SUDO, ElevationMethod.PKEXEC, ElevationMethod.DOAS):
            path = which(str(method))
            if path:
                self._method = method
                self._tool_path = path
                break
        logger.debug("Privilege: root=%s method=%s", self._is_root, self._method)

    @property
    def is_root(self) -> bool:
        return self._is_root

    @property
    def method(self) -> ElevationMethod:
        return self._method

    @property
    def can_elevate(self) -> bool:
        return self._is_root or self._method != ElevationMethod.NONE

    def require_root(self) -> None:
        """Raise PrivilegeError unless root or an elevation tool is available."""
        if not self.can_elevate:
            raise PrivilegeError(
                "root privileges required but no elevation method available "
                "(install sudo, pkexec or doas)"
            )

    def elevated_command(self, command: str, args: list[str]) -> tuple[str, list[str]]:
        """Return ``(command, args)`` rewritten to run as root.

        Unchanged when already root or when no elevation tool exists.
        """
        if self._is_root or self._method == ElevationMethod.NONE:
            return command, list(args)
        if self._method == ElevationMethod.SUDO:
            return self._tool_path, ["-n", command, *args]
        return self._tool_path, [command, *args]

    def sanitized_env(self, environ: Mapping[str, str] | None = None) -> dict[str, str]:
        """Environment for elevated commands.

        Drops loader-injection variables and pins PATH to system dirs.
        """
        source = os.environ if environ is None else environ
        env = {
            k: v for k, v in source.items()
            if k not in _DANGEROUS_ENV and k != "PATH"
        }
        env["PATH"] = SAFE_PATH
        return env

    def __repr__(self) -> str:
        return f"<PrivilegeManager root={self._is_root} method={self._method}>"
