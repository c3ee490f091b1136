"""
Builder — turn an UninstallConfig into a ready-to-run orchestrator.

The standard uninstall runs, in order:

    module_unload → package_removal → config_cleanup → driver_restore

``config_cleanup`` is left out when configs are kept, ``driver_restore``
when restoration is disabled.  When driver_restore removes the nouveau
blacklist, config_cleanup leaves the blacklist files alone so a failed
boot-image rebuild can still write them back.
"""

from __future__ import annotations

import logging

from igor.adapters.base import Executor, PackageManager
from igor.adapters.distro import detect_distribution
from igor.adapters.packages import CommandPackageManager
from igor.adapters.privilege import PrivilegeManager
from igor.adapters.shell.executor import SubprocessExecutor
from igor.core.context import UninstallContext
from igor.core.discovery.discovery import Discovery, PackageDiscovery
from igor.core.engine.orchestrator import Orchestrator
from igor.core.engine.workflow import Workflow
from igor.core.errors import PackageError
from igor.core.kernel.detector import KernelDetector, ProcModulesDetector
from igor.core.models.config import UninstallConfig
from igor.core.models.distro import Distribution
from igor.core.steps import ConfigCleanupStep, DriverRestoreStep, ModuleUnloadStep, PackageRemovalStep
from igor.core.steps.driver_restore import BLACKLIST_PATHS
from igor.core.steps.paths import BLACKLIST_CONFIG_PATHS

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "gpu-driver-uninstall"


def _merged(*groups: list[str]) -> list[str]:
    return list(dict.fromkeys(p for group in groups for p in group))


def build_workflow(config: UninstallConfig, discovery: Discovery | None = None) -> Workflow:
    """Standard uninstall workflow for ``config``."""
    workflow = Workflow(WORKFLOW_NAME)

    workflow.add_step(ModuleUnloadStep(
        modules=config.modules.names,
        skip_if_not_loaded=config.modules.skip_if_not_loaded,
        force=config.force,
        retry_count=config.modules.retry_count,
        retry_delay=config.modules.retry_delay,
    ))

    workflow.add_step(PackageRemovalStep(
        packages=config.packages.names,
        remove_all=config.packages.remove_all,
        discovery=discovery,
        purge=config.packages.purge,
        auto_remove=config.packages.auto_remove,
        batch_size=config.packages.batch_size,
    ))

    # driver_restore owns the blacklist files whenever it removes them
    restore_owns_blacklist = config.restore.enabled and config.restore.remove_blacklist

    if not config.keep_config:
        c = config.configs
        workflow.add_step(ConfigCleanupStep(
            paths=c.paths,
            backup=c.backup,
            backup_dir=c.backup_dir,
            allowed_dirs=c.allowed_dirs,
            include_blacklist=c.include_blacklist and not restore_owns_blacklist,
            include_xorg=c.include_xorg,
            include_modprobe=c.include_modprobe,
            include_persistence=c.include_persistence,
        ))

    if config.restore.enabled:
        r = config.restore
        workflow.add_step(DriverRestoreStep(
            remove_blacklist=r.remove_blacklist,
            blacklist_paths=_merged(BLACKLIST_PATHS, BLACKLIST_CONFIG_PATHS),
            regenerate_initramfs=r.regenerate_initramfs,
            load_module=r.load_module,
            fallback_module=r.fallback_module,
        ))

    logger.debug("Built workflow with steps: %s", [s.name for s in workflow.steps])
    return workflow


def build_orchestrator(config: UninstallConfig, workflow: Workflow) -> Orchestrator:
    return Orchestrator(
        workflow,
        stop_on_first_error=config.orchestrator.stop_on_first_error,
        auto_rollback=config.orchestrator.auto_rollback,
        dry_run=config.dry_run,
    )


def build_context(
    config: UninstallConfig,
    *,
    executor: Executor | None = None,
    package_manager: PackageManager | None = None,
    privilege: PrivilegeManager | None = None,
    detector: KernelDetector | None = None,
    distro: Distribution | None = None,
) -> UninstallContext:
    """Context wired to the real system unless collaborators are given.

    A distribution without a supported package manager yields a context
    with no package manager; package removal then fails validation.
    """
    distro = distro if distro is not None else detect_distribution()
    privilege = privilege if privilege is not None else PrivilegeManager()
    executor = executor if executor is not None else SubprocessExecutor(privilege)

    if package_manager is None:
        try:
            package_manager = CommandPackageManager.for_family(executor, distro.family)
        except PackageError as e:
            logger.warning("No package manager for %s: %s", distro, e)

    if detector is None:
        detector = ProcModulesDetector(executor, family=distro.family)

    return UninstallContext(
        executor=executor,
        package_manager=package_manager,
        privilege=privilege,
        detector=detector,
        distro=distro,
        dry_run=config.dry_run,
        force=config.force,
        keep_config=config.keep_config,
    )


def build_uninstall(
    config: UninstallConfig,
    ctx: UninstallContext,
) -> Orchestrator:
    """Workflow plus orchestrator, with discovery bound to ``ctx``."""
    discovery = PackageDiscovery(ctx.package_manager, ctx.distro)
    return build_orchestrator(config, build_workflow(config, discovery))
