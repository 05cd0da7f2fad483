"""
Tests for the Authority Schema — verifies the Pydantic models.

Validates:
- Wire parsing (null flags, missing children, owner groups)
- Ceilings never serialized
- Create request validation
- Actor scope mapping
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from authority_engine.tree.schema import (
    ApiEnvelope,
    AuthorityCreateRequest,
    AuthorityDetail,
    AuthoritySummary,
    Bounded,
    OwnerCode,
    Page,
    PermissionField,
    PermissionNode,
    Unrestricted,
    owner_group_of,
    scope_from_authority,
)

from conftest import node


class TestPermissionNode:
    """Tree node parsing and serialization."""

    def test_null_flags_read_as_false(self):
        """Null flags and children should parse as false and empty."""
        parsed = PermissionNode.model_validate({
            "program_id": 1,
            "program_name": "Store",
            "can_read": None,
            "can_create_delete": None,
            "can_update": None,
            "children": None,
        })
        assert (parsed.can_read, parsed.can_create_delete, parsed.can_update) == (
            False, False, False,
        )
        assert parsed.children == ()

    def test_nested_children_parsed(self):
        """Nested children should parse into tuples of nodes."""
        parsed = PermissionNode.model_validate({
            "program_id": 1,
            "program_name": "Store",
            "children": [{"program_id": 2, "program_name": "Info", "can_read": True}],
        })
        assert isinstance(parsed.children, tuple)
        assert parsed.children[0].can_read is True

    def test_ceilings_default_closed_and_not_serialized(self):
        """Ceilings should default to false and never be dumped."""
        n = node(1, True)
        assert n.max_can_read is False
        dumped = n.model_dump()
        assert "max_can_read" not in dumped
        assert dumped["can_read"] is True

    def test_nodes_are_frozen(self):
        """Nodes should refuse assignment."""
        n = node(1)
        with pytest.raises(ValidationError):
            n.can_read = True

    def test_ceiling_attribute_names(self):
        """Each field should name its ceiling attribute."""
        assert PermissionField.CAN_UPDATE.ceiling == "max_can_update"


class TestAuthorities:
    """Authority list and detail models."""

    def test_owner_group_derived(self):
        """Owner group should be the first two parts of the owner code."""
        summary = AuthoritySummary(id=1, owner_code="PRGRP_002_002", name="Store Manager")
        assert summary.owner_group == "PRGRP_002"
        assert owner_group_of("PRGRP_001_001") == "PRGRP_001"
        assert OwnerCode.HEAD_OFFICE.group == "PRGRP_002"

    def test_detail_envelope(self):
        """A detail response should parse through the envelope."""
        envelope = ApiEnvelope[AuthorityDetail].model_validate({
            "success": True,
            "data": {
                "id": 3,
                "owner_code": "PRGRP_001_001",
                "owner_group": "PRGRP_001",
                "name": "Platform",
                "is_used": True,
                "created_at": "2025-01-02T03:04:05",
                "details": [{"program_id": 1, "program_name": "Store", "can_read": True}],
            },
        })
        assert envelope.data.details[0].can_read is True

    def test_page_aliases(self):
        """Page metadata should accept camelCase keys."""
        page = Page[AuthoritySummary].model_validate({
            "content": [{"id": 1, "owner_code": "PRGRP_001_001", "name": "Platform"}],
            "totalElements": 1,
            "totalPages": 1,
            "size": 50,
            "number": 1,
            "first": True,
            "last": True,
            "empty": False,
        })
        assert page.total_elements == 1
        assert page.content[0].name == "Platform"


class TestCreateRequest:
    """Master data rules for new authorities."""

    def test_platform_needs_no_scope_ids(self):
        """Platform authorities need no head office or franchisee."""
        request = AuthorityCreateRequest(owner_code="PRGRP_001_001", name="  Admin  ")
        assert request.name == "Admin"
        assert request.owner_code == OwnerCode.PLATFORM

    def test_short_name_rejected(self):
        """Names shorter than two characters should be rejected."""
        with pytest.raises(ValidationError):
            AuthorityCreateRequest(owner_code="PRGRP_001_001", name=" A ")

    def test_head_office_requires_head_office_id(self):
        """Head office authorities should require a head office id."""
        with pytest.raises(ValidationError):
            AuthorityCreateRequest(owner_code="PRGRP_002_001", name="Office")

    def test_franchisee_requires_both_ids(self):
        """Franchisee authorities should require both scope ids."""
        with pytest.raises(ValidationError):
            AuthorityCreateRequest(owner_code="PRGRP_002_002", name="Shop", head_office_id=1)
        request = AuthorityCreateRequest(
            owner_code="PRGRP_002_002", name="Shop", head_office_id=1, franchisee_id=2,
        )
        assert request.franchisee_id == 2


class TestActorScope:
    """Explicit scope instead of the empty-tree convention."""

    def test_empty_tree_is_unrestricted(self):
        """An empty actor tree should mean unrestricted."""
        assert isinstance(scope_from_authority(()), Unrestricted)
        assert isinstance(scope_from_authority(None), Unrestricted)

    def test_non_empty_tree_is_bounded(self):
        """A non-empty actor tree should bound the actor."""
        scope = scope_from_authority([node(1, True)])
        assert isinstance(scope, Bounded)
        assert scope.tree[0].program_id == 1
