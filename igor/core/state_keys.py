"""
Shared-state keys — the message channel between steps.

Steps write facts under these keys; their own rollback and the
workflow's report read them back.
"""

# Module unload
MODULES_UNLOADED = "modules_unloaded"          # bool
UNLOADED_MODULES = "unloaded_modules"          # list[str], unload order
MODULES_IN_USE = "modules_in_use"              # list[str]

# Configuration cleanup
CONFIGS_CLEANED = "configs_cleaned"            # bool
CLEANED_CONFIGS = "cleaned_configs"            # list[str]
BACKED_UP_CONFIGS = "backed_up_configs"        # dict[str, str] original -> backup
BACKUP_DIR = "backup_dir"                      # str
FAILED_CONFIGS = "failed_configs"              # list[str]

# Package removal
PACKAGES_REMOVED = "packages_removed"          # bool
REMOVED_PACKAGES = "removed_packages"          # list[str]
FAILED_PACKAGES = "failed_packages"            # list[str]
REMOVAL_PURGED = "removal_purged"              # bool

# Driver restore
DRIVER_RESTORED = "driver_restored"            # bool
BLACKLIST_REMOVED = "blacklist_removed"        # bool
REMOVED_BLACKLISTS = "removed_blacklists"      # dict[str, str] path -> content
INITRAMFS_REGENERATED = "initramfs_regenerated"  # bool
FALLBACK_MODULE_LOADED = "fallback_module_loaded"  # bool

NEEDS_REBOOT = "needs_reboot"                  # bool
