"""
Kernel module model — one row of the live module table.

ModuleInfo is parsed fresh from /proc/modules on every query and never
cached: module state changes underneath us while we unload.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field


class ModuleState(StrEnum):
    """Lifecycle state column of /proc/modules."""

    LIVE = "Live"
    LOADING = "Loading"
    UNLOADING = "Unloading"


class ModuleInfo(BaseModel):
    """A loaded kernel module."""

    name: str
    size: int = 0
    use_count: int = 0
    used_by: list[str] = Field(default_factory=list)  # dependent modules
    state: str = ""

    @property
    def in_use(self) -> bool:
        return self.use_count > 0

    @property
    def is_live(self) -> bool:
        return self.state == ModuleState.LIVE
