"""
Module table parsing — /proc/modules and lsmod-style records.

Record format::

    name size use_count deps state address [taint]

``deps`` is a comma-separated list (often with a trailing comma) or
``-`` when nothing depends on the module.  Malformed records are
skipped; parsing never fails.
"""

from __future__ import annotations

import logging

from igor.core.models.module import ModuleInfo

logger = logging.getLogger(__name__)

VENDOR_MODULE_PREFIX = "nvidia"


def normalize_name(name: str) -> str:
    """Kernel module names treat ``-`` and ``_`` alike; the table uses ``_``."""
    return name.replace("-", "_")


def parse_module_line(line: str) -> ModuleInfo | None:
    """Parse one record, or return None if it is malformed."""
    fields = line.split()
    if len(fields) < 5:
        return None
    try:
        size = int(fields[1])
        use_count = int(fields[2])
    except ValueError:
        return None

    deps = fields[3]
    used_by = [] if deps in ("-", "") else [d for d in deps.rstrip(",").split(",") if d]
    return ModuleInfo(
        name=fields[0],
        size=size,
        use_count=use_count,
        used_by=used_by,
        state=fields[4],
    )


def parse_modules_content(content: str | bytes) -> list[ModuleInfo]:
    """Parse a whole module table."""
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    modules = []
    for line in content.splitlines():
        if not line.strip():
            continue
        info = parse_module_line(line)
        if info is None:
            logger.debug("Skipping malformed module record: %r", line)
            continue
        modules.append(info)
    return modules


def find_module(modules: list[ModuleInfo], name: str) -> ModuleInfo | None:
    target = normalize_name(name)
    for m in modules:
        if normalize_name(m.name) == target:
            return m
    return None


def is_module_in_list(modules: list[ModuleInfo], name: str) -> bool:
    return find_module(modules, name) is not None


def filter_by_state(modules: list[ModuleInfo], state: str) -> list[ModuleInfo]:
    return [m for m in modules if m.state == state]


def vendor_modules(modules: list[ModuleInfo]) -> list[ModuleInfo]:
    """The GPU vendor's modules (``nvidia*``)."""
    return [m for m in modules if m.name.startswith(VENDOR_MODULE_PREFIX)]


def unload_order(names: list[str], modules: list[ModuleInfo]) -> list[str]:
    """Order ``names`` so every module comes after the modules using it.

    Dependents are unloaded first and base modules last.  Names absent
    from the table keep their relative position.
    """
    by_name = {normalize_name(n): n for n in names}
    table = {normalize_name(m.name): m for m in modules}
    ordered: list[str] = []
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(key: str) -> None:
        if key in done or key in visiting:
            return
        visiting.add(key)
        info = table.get(key)
        if info is not None:
            for dep in info.used_by:
                dep_key = normalize_name(dep)
                if dep_key in by_name:
                    visit(dep_key)
        visiting.discard(key)
        done.add(key)
        ordered.append(by_name[key])

    for name in names:
        visit(normalize_name(name))
    return ordered
