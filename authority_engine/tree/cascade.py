"""
Cascade Engine — pure transforms over permission trees.

A toggle sets one flag on one program and pushes the same value down to
every descendant. Propagation never goes upward. After each node is set,
read is re-checked: a node without read cannot keep create/delete or
update, so clearing read clears the whole row for the subtree.

Trees are immutable. ``apply_toggle`` rebuilds only the nodes on the path
from the root to the target and the target's own subtree; every other
subtree is reused as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from authority_engine.errors import MalformedTreeError
from authority_engine.tree.schema import (
    AuthorityFilter,
    PermissionDetail,
    PermissionField,
    PermissionNode,
    PermissionTree,
)


@dataclass(frozen=True)
class CascadeResult:
    """Outcome of a single toggle applied to a tree."""

    tree: PermissionTree
    target: PermissionNode | None

    @property
    def found(self) -> bool:
        return self.target is not None


# ════════════════════════════════════════════════════════════════
# Traversal
# ════════════════════════════════════════════════════════════════


def iter_nodes(tree: PermissionTree) -> Iterator[PermissionNode]:
    """Yield every node in pre-order."""
    for node in tree:
        yield node
        yield from iter_nodes(node.children)


def find_node(tree: PermissionTree, program_id: int) -> PermissionNode | None:
    """Return the node for ``program_id`` at any depth, or None."""
    for node in iter_nodes(tree):
        if node.program_id == program_id:
            return node
    return None


def collect_program_ids(tree: PermissionTree) -> list[int]:
    return [node.program_id for node in iter_nodes(tree)]


def validate_tree(tree: PermissionTree) -> None:
    """
    Check that ``tree`` is a proper tree.

    Raises:
        MalformedTreeError: A program id appears twice, or the same node
            object is reachable from two places.
    """
    seen_ids: set[int] = set()
    seen_objects: set[int] = set()
    for node in iter_nodes(tree):
        if id(node) in seen_objects:
            raise MalformedTreeError(
                f"Node for program {node.program_id} is shared between parents"
            )
        if node.program_id in seen_ids:
            raise MalformedTreeError(f"Duplicate program id {node.program_id} in tree")
        seen_objects.add(id(node))
        seen_ids.add(node.program_id)


def satisfies_read_invariant(tree: PermissionTree) -> bool:
    """True when no node grants create/delete or update without read."""
    return all(
        node.can_read or not (node.can_create_delete or node.can_update)
        for node in iter_nodes(tree)
    )


def flatten_tree(tree: PermissionTree) -> list[PermissionDetail]:
    """Pre-order list of flag triples, as submitted when creating an authority."""
    return [
        PermissionDetail(
            program_id=node.program_id,
            can_read=node.can_read,
            can_create_delete=node.can_create_delete,
            can_update=node.can_update,
        )
        for node in iter_nodes(tree)
    ]


def matches_filter(node: PermissionNode, active: AuthorityFilter | None) -> bool:
    """Whether ``node`` is highlighted under the active filter."""
    if active is None or active == AuthorityFilter.NONE:
        return False
    if active == AuthorityFilter.READ:
        return node.can_read
    if active == AuthorityFilter.CREATE_DELETE:
        return node.can_create_delete
    if active == AuthorityFilter.UPDATE:
        return node.can_update
    return False


# ════════════════════════════════════════════════════════════════
# Toggle
# ════════════════════════════════════════════════════════════════


def _set_with_downgrade(
    node: PermissionNode, field: PermissionField, value: bool
) -> PermissionNode:
    update: dict[str, object] = {field.value: value}
    can_read = value if field == PermissionField.CAN_READ else node.can_read
    if not can_read:
        update[PermissionField.CAN_CREATE_DELETE.value] = False
        update[PermissionField.CAN_UPDATE.value] = False
    update["children"] = tuple(
        _set_with_downgrade(child, field, value) for child in node.children
    )
    return node.model_copy(update=update)


def apply_toggle(
    tree: PermissionTree,
    program_id: int,
    field: PermissionField | str,
    value: bool,
) -> CascadeResult:
    """
    Set ``field`` to ``value`` on ``program_id`` and all of its descendants.

    Args:
        tree: The current tree. Must be well formed.
        program_id: Target program, searched at any depth.
        field: One of the three permission flags.
        value: The new value.

    Returns:
        CascadeResult with the new tree and the new target node. When the
        target does not exist, the original tree object is returned with
        ``target=None``.

    Raises:
        ValueError: ``field`` is not a permission flag.
        MalformedTreeError: ``tree`` is not a proper tree.
    """
    field = PermissionField(field)
    validate_tree(tree)

    target: PermissionNode | None = None

    def rebuild(nodes: PermissionTree) -> PermissionTree:
        nonlocal target
        out: list[PermissionNode] = []
        changed = False
        for node in nodes:
            if target is None and node.program_id == program_id:
                target = _set_with_downgrade(node, field, value)
                out.append(target)
                changed = True
            elif target is None and node.children:
                children = rebuild(node.children)
                if children is node.children:
                    out.append(node)
                else:
                    out.append(node.model_copy(update={"children": children}))
                    changed = True
            else:
                out.append(node)
        return tuple(out) if changed else nodes

    new_tree = rebuild(tuple(tree))
    if target is None:
        return CascadeResult(tree=tree, target=None)
    return CascadeResult(tree=new_tree, target=target)
