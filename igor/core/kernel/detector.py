"""
Kernel introspection — loaded modules, secure boot, kernel headers.

KernelDetector is the optional collaborator steps consult for "is this
module loaded".  Without one, steps fall back to ``lsmod`` through the
executor.  The table is re-read on every query, never cached.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from igor.core.errors import DetectionError
from igor.core.kernel.modules import find_module, parse_modules_content
from igor.core.models.distro import DistroFamily
from igor.core.models.module import ModuleInfo

if TYPE_CHECKING:
    from igor.adapters.base import Executor

logger = logging.getLogger(__name__)

PROC_MODULES = Path("/proc/modules")
EFI_VARS = Path("/sys/firmware/efi/efivars")
KERNEL_HEADERS_PREFIX = "/usr/src/linux-headers-"
MODULES_BUILD_DIR = Path("/lib/modules")


@runtime_checkable
class KernelDetector(Protocol):
    """What steps need to know about the running kernel."""

    def loaded_modules(self) -> list[ModuleInfo]: ...

    def is_module_loaded(self, name: str) -> bool: ...

    def get_module(self, name: str) -> ModuleInfo | None: ...

    def is_secure_boot_enabled(self) -> bool: ...


def kernel_release(version: str) -> str:
    """``"6.5.0-44-generic"`` → ``"6.5.0"``."""
    m = re.match(r"^(\d+\.\d+\.\d+)", version) or re.match(r"^(\d+\.\d+)", version)
    return m.group(1) if m else version


def headers_package_for(family: DistroFamily, kernel_version: str) -> str:
    """Name of the kernel headers package for ``family``."""
    if family == DistroFamily.RHEL:
        return f"kernel-devel-{kernel_version}"
    if family == DistroFamily.ARCH:
        return "linux-lts-headers" if "lts" in kernel_version else "linux-headers"
    if family == DistroFamily.SUSE:
        return "kernel-default-devel"
    return f"linux-headers-{kernel_version}"


class ProcModulesDetector:
    """KernelDetector reading /proc/modules and sysfs.

    Args:
        executor: Used for ``uname`` and ``mokutil``; optional.
        family: Distribution family, for the headers package name.
        proc_modules: Module table path (overridable for tests).
        efi_vars: EFI variables directory.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        family: DistroFamily = DistroFamily.UNKNOWN,
        proc_modules: Path = PROC_MODULES,
        efi_vars: Path = EFI_VARS,
        headers_prefix: str = KERNEL_HEADERS_PREFIX,
        modules_build_dir: Path = MODULES_BUILD_DIR,
    ):
        self._executor = executor
        self._family = family
        self._proc_modules = Path(proc_modules)
        self._efi_vars = Path(efi_vars)
        self._headers_prefix = headers_prefix
        self._modules_build_dir = Path(modules_build_dir)

    # ── Modules ─────────────────────────────────────────────────

    def loaded_modules(self) -> list[ModuleInfo]:
        """Parse the module table.

        Raises:
            DetectionError: If the table cannot be read.
        """
        try:
            content = self._proc_modules.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError as e:
            raise DetectionError(f"module table not found: {self._proc_modules}") from e
        except PermissionError as e:
            raise DetectionError(f"permission denied reading {self._proc_modules}") from e
        except OSError as e:
            raise DetectionError(f"cannot read {self._proc_modules}: {e}") from e
        return parse_modules_content(content)

    def is_module_loaded(self, name: str) -> bool:
        return find_module(self.loaded_modules(), name) is not None

    def get_module(self, name: str) -> ModuleInfo | None:
        return find_module(self.loaded_modules(), name)

    # ── Secure boot ─────────────────────────────────────────────

    def is_secure_boot_enabled(self) -> bool:
        """mokutil first, then the SecureBoot EFI variable. Unknown reads as False."""
        if self._executor is not None:
            result = self._executor.run("mokutil", "--sb-state")
            combined = result.stdout + result.stderr
            if "SecureBoot enabled" in combined:
                return True
            if "SecureBoot disabled" in combined:
                return False
            if result.error is None:
                return False
        return self._secure_boot_from_efi()

    def _secure_boot_from_efi(self) -> bool:
        try:
            entries = sorted(self._efi_vars.iterdir())
        except OSError:
            return False
        for entry in entries:
            if not entry.name.startswith("SecureBoot-"):
                continue
            try:
                content = entry.read_bytes()
            except OSError:
                return False
            # 4 bytes of attributes, then the value byte
            return len(content) >= 5 and content[4] == 0x01
        return False

    # ── Kernel headers ──────────────────────────────────────────

    def kernel_version(self) -> str:
        """``uname -r`` output.

        Raises:
            DetectionError: Without an executor or when uname fails.
        """
        if self._executor is None:
            raise DetectionError("no executor available")
        result = self._executor.run("uname", "-r")
        version = result.stdout.strip()
        if not result.ok or not version:
            raise DetectionError(f"failed to get kernel version: {result.error_message}")
        return version

    def headers_installed(self, kernel_version: str | None = None) -> bool:
        version = kernel_version or self.kernel_version()
        if Path(self._headers_prefix + version).exists():
            return True
        return (self._modules_build_dir / version / "build").is_dir()

    def headers_package(self, kernel_version: str | None = None) -> str:
        return headers_package_for(self._family, kernel_version or self.kernel_version())
