"""
Configuration models — the schema of igor.yml.

Every section is optional; an empty file (or no file at all) yields a
configuration that performs the standard full uninstall.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MODULES = ["nvidia_drm", "nvidia_modeset", "nvidia_uvm", "nvidia"]
DEFAULT_BACKUP_DIR = "/var/lib/igor/backup/configs"
DEFAULT_ALLOWED_DIRS = ["/etc/", "/usr/share/", "/var/lib/igor/"]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ModulesConfig(_Section):
    """Kernel module unload settings."""

    names: list[str] = Field(default_factory=lambda: list(DEFAULT_MODULES))
    retry_count: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    skip_if_not_loaded: bool = True


class PackagesConfig(_Section):
    """Package removal settings."""

    remove_all: bool = True      # remove every discovered vendor package
    names: list[str] = Field(default_factory=list)
    purge: bool = False
    auto_remove: bool = True
    batch_size: int = 0          # <= 0 removes everything in one call


class ConfigsConfig(_Section):
    """Configuration file cleanup settings."""

    paths: list[str] = Field(default_factory=list)
    backup: bool = True
    backup_dir: str = DEFAULT_BACKUP_DIR
    allowed_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_DIRS))
    include_blacklist: bool = True
    include_xorg: bool = True
    include_modprobe: bool = True
    include_persistence: bool = True

    @field_validator("allowed_dirs")
    @classmethod
    def _dirs_absolute(cls, v: list[str]) -> list[str]:
        for d in v:
            if not d.startswith("/"):
                raise ValueError(f"allowed directory must be absolute: {d!r}")
        return v


class RestoreConfig(_Section):
    """Fallback driver restoration settings."""

    enabled: bool = True
    remove_blacklist: bool = True
    regenerate_initramfs: bool = True
    load_module: bool = True
    fallback_module: str = "nouveau"


class OrchestratorConfig(_Section):
    """Error policy of the orchestrator."""

    stop_on_first_error: bool = True
    auto_rollback: bool = False


class UninstallConfig(_Section):
    """Top-level igor.yml schema."""

    dry_run: bool = False
    force: bool = False
    keep_config: bool = False
    modules: ModulesConfig = Field(default_factory=ModulesConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    configs: ConfigsConfig = Field(default_factory=ConfigsConfig)
    restore: RestoreConfig = Field(default_factory=RestoreConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
