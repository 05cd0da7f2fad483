"""
Ceiling Resolver — how far the acting user may raise each permission.

A user can only hand out what they hold. For a bounded actor, the ceiling
of every program in the edited tree is the actor's own grant on the same
program, looked up at any depth of the actor's tree; programs the actor
does not hold at all get no ceiling. An unrestricted actor has every
ceiling raised.
"""

from __future__ import annotations

from authority_engine.tree.cascade import iter_nodes, validate_tree
from authority_engine.tree.schema import (
    ActorScope,
    Bounded,
    PermissionField,
    PermissionNode,
    PermissionTree,
    Unrestricted,
)


def _grants_by_program(tree: PermissionTree) -> dict[int, PermissionNode]:
    grants: dict[int, PermissionNode] = {}
    for node in iter_nodes(tree):
        # First occurrence wins, matching a depth-first lookup
        grants.setdefault(node.program_id, node)
    return grants


def resolve_ceilings(scope: ActorScope, tree: PermissionTree) -> PermissionTree:
    """
    Return ``tree`` with ``max_can_*`` filled in for the given actor scope.

    Persisted flags are left untouched; callers decide whether values above
    the ceiling are clamped or only reported.
    """
    validate_tree(tree)

    if isinstance(scope, Unrestricted):
        def ceiling_for(node: PermissionNode) -> dict[str, bool]:
            return {
                "max_can_read": True,
                "max_can_create_delete": True,
                "max_can_update": True,
            }
    elif isinstance(scope, Bounded):
        grants = _grants_by_program(scope.tree)

        def ceiling_for(node: PermissionNode) -> dict[str, bool]:
            own = grants.get(node.program_id)
            return {
                "max_can_read": bool(own and own.can_read),
                "max_can_create_delete": bool(own and own.can_create_delete),
                "max_can_update": bool(own and own.can_update),
            }
    else:
        raise TypeError(f"Unknown actor scope: {scope!r}")

    def merge(nodes: PermissionTree) -> PermissionTree:
        return tuple(
            node.model_copy(
                update={**ceiling_for(node), "children": merge(node.children)}
            )
            for node in nodes
        )

    return merge(tuple(tree))


def exceeds_ceiling(node: PermissionNode, field: PermissionField | str, value: bool) -> bool:
    """True when setting ``field`` to ``value`` would go above the node's ceiling."""
    field = PermissionField(field)
    return bool(value) and not getattr(node, field.ceiling)


def clamp_to_ceilings(tree: PermissionTree) -> PermissionTree:
    """
    Lower every flag that exceeds its ceiling, then reapply the read rule.

    Used when a whole tree arrives from elsewhere (bulk copy) and cannot be
    checked toggle by toggle.
    """
    def clamp(node: PermissionNode) -> PermissionNode:
        can_read = node.can_read and node.max_can_read
        return node.model_copy(
            update={
                "can_read": can_read,
                "can_create_delete": can_read
                and node.can_create_delete
                and node.max_can_create_delete,
                "can_update": can_read and node.can_update and node.max_can_update,
                "children": tuple(clamp(child) for child in node.children),
            }
        )

    return tuple(clamp(node) for node in tree)

