"""Adapters — bindings to the host: processes, privilege, packages, os-release.

Public re-exports for convenient access.
"""

from igor.adapters.base import CommandResult, Executor, PackageManager
from igor.adapters.mock import MockExecutor, MockPackageManager

__all__ = [
    "CommandResult",
    "Executor",
    "MockExecutor",
    "MockPackageManager",
    "PackageManager",
]
