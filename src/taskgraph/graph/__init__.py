"""Dependency graph: edges between items, readiness, traversal."""

from .cycles import find_cycles, find_parent_child_cycles, fix_parent_child_cycles
from .deps import (
    add_edge,
    all_dep_statuses,
    all_edges,
    ancestor_dep_statuses,
    blocked_by,
    dep_statuses,
    dependency_chain,
    has_unmet_deps,
    impact,
    list_deps,
    remove_edge,
    reverse_chain,
)
from .ready import ready_items

__all__ = [
    "add_edge",
    "all_dep_statuses",
    "all_edges",
    "ancestor_dep_statuses",
    "blocked_by",
    "dep_statuses",
    "dependency_chain",
    "find_cycles",
    "find_parent_child_cycles",
    "fix_parent_child_cycles",
    "has_unmet_deps",
    "impact",
    "list_deps",
    "ready_items",
    "remove_edge",
    "reverse_chain",
]
