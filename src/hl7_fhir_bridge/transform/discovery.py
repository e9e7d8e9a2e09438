# src/hl7_fhir_bridge/transform/discovery.py
"""
Module auto-discovery shared by the converter subpackages.

Importing a converter module runs its registration decorator, so importing
every public module under a subpackage is enough to populate the registries.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Iterable, List, Set

LOG = logging.getLogger(__name__)

_DISCOVERED: Set[str] = set()


def _iter_modules(pkg_name: str) -> Iterable[str]:
    """
    Yield fully-qualified module names directly under the given package.
    """
    pkg = importlib.import_module(pkg_name)
    pkg_path = getattr(pkg, "__path__", None)
    if not pkg_path:
        return
    for _, name, _ in pkgutil.iter_modules(pkg_path, prefix=pkg_name + "."):
        yield name


def discover(pkg_name: str) -> List[str]:
    """
    Import all converter modules under pkg_name.

    Modules whose name starts with an underscore hold shared helpers and are
    skipped. Idempotent: safe to call multiple times.

    Returns
    -------
    List[str]
        Modules imported by this call.
    """
    imported: List[str] = []
    for modname in _iter_modules(pkg_name):
        if modname in _DISCOVERED:
            continue
        if modname.rsplit(".", 1)[-1].startswith("_"):
            continue
        importlib.import_module(modname)
        _DISCOVERED.add(modname)
        imported.append(modname)
    if imported:
        LOG.debug("Loaded %d converter modules from %s", len(imported), pkg_name)
    return imported
