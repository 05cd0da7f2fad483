"""
Shared fixtures for the authority engine tests.

``FakeStore`` stands in for the remote store. In its default mode it
answers immediately, applying each changed flag with the same cascade the
server uses. With ``manual = True`` every permission update parks on a
future so a test can decide when, and in which order, responses arrive.
"""

from __future__ import annotations

import asyncio

import pytest

from authority_engine.errors import RemoteRejectedError
from authority_engine.tree.cascade import apply_toggle, find_node
from authority_engine.tree.schema import (
    AuthorityCreateRequest,
    AuthorityDetail,
    AuthoritySummary,
    Page,
    PermissionField,
    PermissionNode,
    PermissionTree,
    PermissionUpdate,
    ProgramNode,
)


def node(
    program_id: int,
    read: bool = False,
    cd: bool = False,
    up: bool = False,
    children: tuple[PermissionNode, ...] = (),
    name: str | None = None,
) -> PermissionNode:
    return PermissionNode(
        program_id=program_id,
        program_name=name or f"Program {program_id}",
        can_read=read,
        can_create_delete=cd,
        can_update=up,
        children=children,
    )


def make_sample_tree() -> PermissionTree:
    """
    1 Store (R CD)
    ├── 2 Store Info (R)
    │   └── 4 Store Hours (R CD U)
    └── 3 Store Staff (R U)
    5 Payroll (-)
    └── 6 Overtime (-)
    """
    return (
        node(1, True, True, False, name="Store", children=(
            node(2, True, False, False, name="Store Info", children=(
                node(4, True, True, True, name="Store Hours"),
            )),
            node(3, True, False, True, name="Store Staff"),
        )),
        node(5, name="Payroll", children=(
            node(6, name="Overtime"),
        )),
    )


def make_detail(
    authority_id: int,
    tree: PermissionTree,
    owner_code: str = "PRGRP_002_001",
    name: str | None = None,
) -> AuthorityDetail:
    return AuthorityDetail(
        id=authority_id,
        owner_code=owner_code,
        head_office_id=10 if owner_code != "PRGRP_001_001" else None,
        name=name or f"Authority {authority_id}",
        details=tree,
    )


class FakeStore:
    """In-memory remote store."""

    def __init__(
        self,
        authorities: list[AuthorityDetail] | None = None,
        catalog: list[ProgramNode] | None = None,
    ) -> None:
        self.authorities = {a.id: a for a in authorities or []}
        self.catalog = catalog or []
        self.manual = False
        self.fail_next: Exception | None = None
        self.pending: list[asyncio.Future] = []
        self.update_calls: list[tuple[int, int, PermissionUpdate]] = []
        self.created: list[AuthorityCreateRequest] = []

    async def fetch_authority_detail(self, authority_id: int) -> AuthorityDetail:
        if authority_id not in self.authorities:
            raise RemoteRejectedError(f"Authority {authority_id} not found", status_code=404)
        return self.authorities[authority_id]

    async def update_node_permission(
        self, authority_id: int, program_id: int, update: PermissionUpdate
    ) -> AuthorityDetail:
        self.update_calls.append((authority_id, program_id, update))
        if self.manual:
            future = asyncio.get_running_loop().create_future()
            self.pending.append(future)
            return await future
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

        detail = self.authorities[authority_id]
        tree = detail.details
        current = find_node(tree, program_id)
        for field in PermissionField:
            wanted = getattr(update, field.value)
            if current is not None and getattr(current, field.value) != wanted:
                tree = apply_toggle(tree, program_id, field, wanted).tree
                current = find_node(tree, program_id)
        detail = detail.model_copy(update={"details": tree})
        self.authorities[authority_id] = detail
        return detail

    async def fetch_authority_list(
        self, owner_group: str, page: int = 1, size: int = 50, **filters
    ) -> Page[AuthoritySummary]:
        content = [
            AuthoritySummary.model_validate(a.model_dump(exclude={"details"}))
            for a in self.authorities.values()
            if a.owner_group == owner_group
        ]
        return Page[AuthoritySummary](
            content=content[:size],
            totalElements=len(content),
            totalPages=1,
            size=size,
            number=page,
            empty=not content,
        )

    async def fetch_program_catalog(self, kind: str) -> list[ProgramNode]:
        return self.catalog

    async def create_authority(self, request: AuthorityCreateRequest) -> AuthorityDetail:
        self.created.append(request)
        new_id = max(self.authorities, default=0) + 1
        detail = AuthorityDetail(
            id=new_id,
            owner_code=request.owner_code.value,
            head_office_id=request.head_office_id,
            franchisee_id=request.franchisee_id,
            name=request.name,
            is_used=request.is_used,
            description=request.description,
        )
        self.authorities[new_id] = detail
        return detail


@pytest.fixture
def sample_tree() -> PermissionTree:
    return make_sample_tree()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(authorities=[make_detail(1, make_sample_tree())])
