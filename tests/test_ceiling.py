"""
Tests for the Ceiling Resolver.

Validates:
- Unrestricted actors may grant everything
- Bounded actors are limited to their own grants, looked up at any depth
- Clamping of whole trees
"""

from __future__ import annotations

import pytest

from authority_engine.errors import MalformedTreeError
from authority_engine.tree.cascade import find_node, iter_nodes, satisfies_read_invariant
from authority_engine.tree.ceiling import clamp_to_ceilings, exceeds_ceiling, resolve_ceilings
from authority_engine.tree.schema import Bounded, PermissionField, Unrestricted

from conftest import make_sample_tree, node


def _ceilings(n):
    return (n.max_can_read, n.max_can_create_delete, n.max_can_update)


class TestResolveCeilings:
    """Ceilings merged onto a target tree."""

    def test_unrestricted_allows_everything(self):
        """Unrestricted actors should get every ceiling."""
        tree = resolve_ceilings(Unrestricted(), make_sample_tree())
        assert all(_ceilings(n) == (True, True, True) for n in iter_nodes(tree))

    def test_bounded_copies_actor_flags(self):
        """Ceilings should come from the actor's grant at any depth."""
        # Actor holds program 4 nested under a different parent
        actor = (node(100, True, children=(node(4, True, False, True),)),)
        tree = resolve_ceilings(Bounded(actor), make_sample_tree())

        assert _ceilings(find_node(tree, 4)) == (True, False, True)
        assert _ceilings(find_node(tree, 1)) == (False, False, False)

    def test_persisted_flags_untouched(self):
        """Resolving ceilings should not change granted flags."""
        before = make_sample_tree()
        tree = resolve_ceilings(Bounded(()), before)
        for old, new in zip(iter_nodes(before), iter_nodes(tree)):
            assert (old.can_read, old.can_create_delete, old.can_update) == (
                new.can_read, new.can_create_delete, new.can_update,
            )

    def test_empty_bounded_tree_allows_nothing(self):
        """A bounded actor with no grants should get no ceilings."""
        tree = resolve_ceilings(Bounded(()), make_sample_tree())
        assert all(_ceilings(n) == (False, False, False) for n in iter_nodes(tree))

    def test_malformed_target_raises(self):
        """Duplicate program ids should be rejected."""
        with pytest.raises(MalformedTreeError):
            resolve_ceilings(Unrestricted(), (node(1), node(1)))

    def test_unknown_scope_raises(self):
        """An unknown scope type should be rejected."""
        with pytest.raises(TypeError):
            resolve_ceilings("admin", make_sample_tree())


class TestExceedsCeiling:
    """Single-flag ceiling checks."""

    def setup_method(self):
        actor = (node(3, True, False, False),)
        self.tree = resolve_ceilings(Bounded(actor), make_sample_tree())

    def test_granting_above_ceiling(self):
        """Granting above the ceiling should be detected."""
        staff = find_node(self.tree, 3)
        assert exceeds_ceiling(staff, PermissionField.CAN_CREATE_DELETE, True)

    def test_granting_within_ceiling(self):
        """Granting within the ceiling should pass."""
        staff = find_node(self.tree, 3)
        assert not exceeds_ceiling(staff, PermissionField.CAN_READ, True)

    def test_revoking_never_exceeds(self):
        """Revoking should never exceed a ceiling."""
        staff = find_node(self.tree, 3)
        assert not exceeds_ceiling(staff, "can_update", False)


class TestClamp:
    """Whole-tree clamping."""

    def test_clamp_lowers_flags_above_ceiling(self):
        """Clamping should lower flags above ceilings and keep the read rule."""
        actor = (node(1, True, False, False), node(4, True, True, True))
        tree = clamp_to_ceilings(resolve_ceilings(Bounded(actor), make_sample_tree()))

        assert (tree[0].can_read, tree[0].can_create_delete) == (True, False)
        # No ceiling on program 2: whole row cleared, child keeps its own
        assert find_node(tree, 2).can_read is False
        assert find_node(tree, 4).can_update is True
        assert satisfies_read_invariant(tree)
