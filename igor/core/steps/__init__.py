"""
Uninstall steps.
"""

from igor.core.steps.config_cleanup import ConfigCleanupStep
from igor.core.steps.driver_restore import DriverRestoreStep
from igor.core.steps.modunload import ModuleUnloadStep
from igor.core.steps.removal import PackageRemovalStep

__all__ = [
    "ConfigCleanupStep",
    "DriverRestoreStep",
    "ModuleUnloadStep",
    "PackageRemovalStep",
]
