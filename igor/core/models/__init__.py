"""
Domain models for the uninstall engine.

All models are re-exported here for convenient access:

    from igor.core.models import StepResult, ModuleInfo, DiscoveredPackages
"""

from igor.core.models.config import (
    ConfigsConfig,
    ModulesConfig,
    OrchestratorConfig,
    PackagesConfig,
    RestoreConfig,
    UninstallConfig,
)
from igor.core.models.distro import DistroFamily, Distribution
from igor.core.models.module import ModuleInfo, ModuleState
from igor.core.models.package import DiscoveredPackages, Package, RemoveOptions
from igor.core.models.report import (
    EventType,
    ExecutionEntry,
    ExecutionReport,
    UninstallResult,
    UninstallStatus,
)
from igor.core.models.step import StepProgress, StepResult, StepStatus

__all__ = [
    # config.py
    "ConfigsConfig",
    "ModulesConfig",
    "OrchestratorConfig",
    "PackagesConfig",
    "RestoreConfig",
    "UninstallConfig",
    # distro.py
    "DistroFamily",
    "Distribution",
    # module.py
    "ModuleInfo",
    "ModuleState",
    # package.py
    "DiscoveredPackages",
    "Package",
    "RemoveOptions",
    # report.py
    "EventType",
    "ExecutionEntry",
    "ExecutionReport",
    "UninstallResult",
    "UninstallStatus",
    # step.py
    "StepProgress",
    "StepResult",
    "StepStatus",
]
