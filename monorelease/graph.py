"""Dependency graph utilities.

Provides the publish order for a workspace. Packages must be published in
dependency order so that when package A depends on package B, B is already
on the index by the time A is uploaded.
"""

from __future__ import annotations

from collections.abc import Mapping

from .models import PackageInfo


def topo_sort(packages: Mapping[str, PackageInfo]) -> list[str]:
    """Topologically sort packages by their internal dependencies.

    Uses a post-order depth-first walk: each package is emitted after all of
    the packages it depends on. Development-only dependencies (test and dev
    groups) are not edges, so a test suite depending on a downstream package
    cannot create an ordering cycle. Each package is visited once, which also
    guarantees termination on any remaining cycle. Packages are visited in the
    order given, keeping output deterministic where no constraint exists.

    Args:
        packages: Map of package name → PackageInfo, in workspace order.

    Returns:
        List of package names in publish order (dependencies first).

    Example:
        If A depends on B, and B depends on C:
        topo_sort({A, B, C}) → [C, B, A]
    """
    order: list[str] = []
    processed: set[str] = set()

    def visit(name: str) -> None:
        if name in processed:
            return
        processed.add(name)
        for dep in packages[name].runtime_deps():
            # Only workspace members take part in the ordering
            if dep in packages:
                visit(dep)
        order.append(name)

    for name in packages:
        visit(name)
    return order
