"""
Command-driven package manager — one backend per distribution family.

Every backend lists installed packages with a query tool and removes
them with the family's package manager, all through the Executor.

    debian  dpkg-query / apt-get
    rhel    rpm / dnf
    arch    pacman
    suse    rpm / zypper
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from igor.adapters.base import CommandResult, Executor, PackageManager
from igor.core.errors import PackageError
from igor.core.models.distro import DistroFamily
from igor.core.models.package import Package, RemoveOptions

logger = logging.getLogger(__name__)


def _apt_remove_args(options: RemoveOptions) -> list[str]:
    args = ["purge" if options.purge else "remove"]
    if options.no_confirm:
        args.append("-y")
    if options.auto_remove:
        args.append("--auto-remove")
    return args


def _dnf_remove_args(options: RemoveOptions) -> list[str]:
    args = ["remove"]
    if options.no_confirm:
        args.append("-y")
    return args


def _pacman_remove_args(options: RemoveOptions) -> list[str]:
    if options.purge:
        args = ["-Rns"]
    elif options.auto_remove:
        args = ["-Rs"]
    else:
        args = ["-R"]
    if options.no_confirm:
        args.append("--noconfirm")
    return args


def _zypper_remove_args(options: RemoveOptions) -> list[str]:
    args = ["--non-interactive", "remove"] if options.no_confirm else ["remove"]
    if options.purge or options.auto_remove:
        args.append("--clean-deps")
    return args


def _parse_dpkg(stdout: str) -> list[Package]:
    packages = []
    for line in stdout.splitlines():
        parts = line.split("\t")
        if len(parts) < 3 or "install ok installed" not in parts[2]:
            continue
        packages.append(Package(name=parts[0], version=parts[1]))
    return packages


def _parse_rpm(stdout: str) -> list[Package]:
    packages = []
    for line in stdout.splitlines():
        parts = line.split("\t")
        if not parts[0].strip():
            continue
        packages.append(Package(
            name=parts[0].strip(),
            version=parts[1] if len(parts) > 1 else "",
            architecture=parts[2] if len(parts) > 2 else "",
        ))
    return packages


def _parse_pacman(stdout: str) -> list[Package]:
    packages = []
    for line in stdout.splitlines():
        parts = line.split()
        if not parts:
            continue
        packages.append(Package(name=parts[0], version=parts[1] if len(parts) > 1 else ""))
    return packages


_RPM_QUERY = ["-qa", "--queryformat", "%{NAME}\t%{VERSION}-%{RELEASE}\t%{ARCH}\n"]


@dataclass(frozen=True)
class Backend:
    """Command table for one package manager."""

    name: str
    family: DistroFamily
    list_cmd: str
    list_args: tuple[str, ...]
    parse: Callable[[str], list[Package]]
    remove_cmd: str
    remove_args: Callable[[RemoveOptions], list[str]]


BACKENDS: dict[DistroFamily, Backend] = {
    DistroFamily.DEBIAN: Backend(
        name="apt",
        family=DistroFamily.DEBIAN,
        list_cmd="dpkg-query",
        list_args=("-W", "-f=${Package}\t${Version}\t${Status}\n"),
        parse=_parse_dpkg,
        remove_cmd="apt-get",
        remove_args=_apt_remove_args,
    ),
    DistroFamily.RHEL: Backend(
        name="dnf",
        family=DistroFamily.RHEL,
        list_cmd="rpm",
        list_args=tuple(_RPM_QUERY),
        parse=_parse_rpm,
        remove_cmd="dnf",
        remove_args=_dnf_remove_args,
    ),
    DistroFamily.ARCH: Backend(
        name="pacman",
        family=DistroFamily.ARCH,
        list_cmd="pacman",
        list_args=("-Q",),
        parse=_parse_pacman,
        remove_cmd="pacman",
        remove_args=_pacman_remove_args,
    ),
    DistroFamily.SUSE: Backend(
        name="zypper",
        family=DistroFamily.SUSE,
        list_cmd="rpm",
        list_args=tuple(_RPM_QUERY),
        parse=_parse_rpm,
        remove_cmd="zypper",
        remove_args=_zypper_remove_args,
    ),
}


class CommandPackageManager(PackageManager):
    """PackageManager backed by the family's command-line tools."""

    def __init__(self, executor: Executor, backend: Backend):
        self._executor = executor
        self._backend = backend

    @classmethod
    def for_family(cls, executor: Executor, family: DistroFamily) -> CommandPackageManager:
        """Build the manager for ``family``.

        Raises:
            PackageError: If the family has no supported package manager.
        """
        backend = BACKENDS.get(family)
        if backend is None:
            raise PackageError(f"no supported package manager for family '{family}'")
        return cls(executor, backend)

    @property
    def name(self) -> str:
        return self._backend.name

    @property
    def family(self) -> DistroFamily:
        return self._backend.family

    def list_installed(self) -> list[Package]:
        b = self._backend
        result = self._executor.run(b.list_cmd, *b.list_args)
        if not result.ok:
            raise PackageError(f"{b.list_cmd} failed: {result.error_message}")
        packages = b.parse(result.stdout)
        logger.debug("%s: %d packages installed", b.name, len(packages))
        return packages

    def remove(self, packages: list[str], options: RemoveOptions | None = None) -> None:
        if not packages:
            return
        b = self._backend
        opts = options or RemoveOptions()
        # names after "--" are never parsed as options
        args = [*b.remove_args(opts), "--", *packages]
        logger.info("%s: removing %d package(s)", b.name, len(packages))
        result: CommandResult = self._executor.run(b.remove_cmd, *args, elevated=True)
        if not result.ok:
            raise PackageError(
                f"{b.remove_cmd} failed: {result.error_message}",
                packages=packages,
            )
