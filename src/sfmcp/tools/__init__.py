"""
sfmcp.tools - Operation catalog

Each module exports an OPERATIONS tuple of OperationDescriptor; the catalog
is data, interpreted by sfmcp.core.dispatcher.Dispatcher.
"""

from __future__ import annotations

from sfmcp.core.dispatcher import OperationRegistry

from . import admin, apex, generate, orgs, project, query, scanner, sobjects

CATALOG_MODULES = (admin, orgs, sobjects, query, apex, project, scanner, generate)


def build_registry() -> OperationRegistry:
    """Registry with every operation of the catalog."""
    registry = OperationRegistry()
    for module in CATALOG_MODULES:
        registry.extend(module.OPERATIONS)
    return registry


__all__ = ["CATALOG_MODULES", "build_registry"]
