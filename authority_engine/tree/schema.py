"""
Authority Schema — Pydantic models for permission trees and the remote store wire format.

These models are the canonical data structures shared by the ceiling
resolver, the cascade engine, the synchronization controller and the HTTP
client. Every permission tree is an owned, immutable value: nodes are frozen
and children are tuples, so a change always produces new node objects along
the root-to-target path and a rollback snapshot can never alias the live tree.

Wire conventions of the remote store:
    - Every response is wrapped in ``{"success", "message", "data"}``.
    - Structural parent programs may carry ``null`` permission flags.
    - Paged lists use ``content`` / ``totalElements`` / ``totalPages`` ...
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class PermissionField(str, enum.Enum):
    """The three persisted permission flags of a program node."""

    CAN_READ = "can_read"
    CAN_CREATE_DELETE = "can_create_delete"
    CAN_UPDATE = "can_update"

    @property
    def ceiling(self) -> str:
        """Name of the ceiling attribute bounding this flag."""
        return f"max_{self.value}"


class AuthorityFilter(str, enum.Enum):
    """Highlight filter selected in the tree view."""

    READ = "read"
    CREATE_DELETE = "create_delete"
    UPDATE = "update"
    NONE = "none"


class OwnerCode(str, enum.Enum):
    """Ownership scope of an authority."""

    PLATFORM = "PRGRP_001_001"
    HEAD_OFFICE = "PRGRP_002_001"
    FRANCHISEE = "PRGRP_002_002"

    @property
    def group(self) -> str:
        return owner_group_of(self.value)


def owner_group_of(owner_code: str) -> str:
    """``PRGRP_002_001`` → ``PRGRP_002``."""
    return "_".join(owner_code.split("_")[:2])


# ════════════════════════════════════════════════════════════════
# Permission Tree
# ════════════════════════════════════════════════════════════════


class PermissionNode(BaseModel):
    """
    One program in an authority's permission tree.

    ``can_*`` flags are the persisted grant. ``max_can_*`` flags are the
    ceilings of the current session: they are derived from the acting
    user's own authority, never sent to the remote store, and default to
    False until the ceiling resolver fills them in.
    """

    model_config = ConfigDict(frozen=True)

    program_id: int
    program_name: str = ""
    can_read: bool = False
    can_create_delete: bool = False
    can_update: bool = False
    max_can_read: bool = Field(default=False, exclude=True)
    max_can_create_delete: bool = Field(default=False, exclude=True)
    max_can_update: bool = Field(default=False, exclude=True)
    children: tuple[PermissionNode, ...] = ()

    @field_validator("can_read", "can_create_delete", "can_update", mode="before")
    @classmethod
    def _null_flag_is_false(cls, value: Any) -> Any:
        # Structural parents come back from the server with null flags
        return False if value is None else value

    @field_validator("children", mode="before")
    @classmethod
    def _null_children_is_empty(cls, value: Any) -> Any:
        return () if value is None else value

    def flags(self) -> PermissionUpdate:
        """The persisted flag triple of this node."""
        return PermissionUpdate(
            can_read=self.can_read,
            can_create_delete=self.can_create_delete,
            can_update=self.can_update,
        )


PermissionTree = tuple[PermissionNode, ...]


class PermissionUpdate(BaseModel):
    """Body of a per-program permission update."""

    model_config = ConfigDict(frozen=True)

    can_read: bool
    can_create_delete: bool
    can_update: bool


class PermissionDetail(PermissionUpdate):
    """Flattened tree entry submitted when creating an authority."""

    program_id: int


# ════════════════════════════════════════════════════════════════
# Program Catalog
# ════════════════════════════════════════════════════════════════


class ProgramNode(BaseModel):
    """Entry of the program (menu) catalog used to synthesize new trees."""

    id: int | None = None
    parent_id: int | None = None
    name: str
    path: str | None = None
    order_index: int = 0
    level: int = 0
    is_active: bool = True
    children: list[ProgramNode] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def _null_children_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ════════════════════════════════════════════════════════════════
# Authorities
# ════════════════════════════════════════════════════════════════


class AuthoritySummary(BaseModel):
    """Row of the authority list."""

    id: int
    owner_code: str
    owner_group: str | None = None
    head_office_id: int | None = None
    head_office_code: str | None = None
    head_office_name: str | None = None
    franchisee_id: int | None = None
    franchisee_code: str | None = None
    franchisee_name: str | None = None
    name: str
    is_used: bool = True
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _derive_owner_group(self) -> AuthoritySummary:
        if not self.owner_group:
            self.owner_group = owner_group_of(self.owner_code)
        return self


class AuthorityDetail(AuthoritySummary):
    """An authority together with its permission tree."""

    details: PermissionTree = ()

    @field_validator("details", mode="before")
    @classmethod
    def _null_details_is_empty(cls, value: Any) -> Any:
        return () if value is None else value


class AuthorityCreateRequest(BaseModel):
    """Payload of a new authority, including its flattened tree."""

    owner_code: OwnerCode
    head_office_id: int | None = None
    franchisee_id: int | None = None
    name: str
    is_used: bool = True
    description: str | None = None
    details: list[PermissionDetail] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_min_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("authority name must be at least 2 characters")
        return value

    @model_validator(mode="after")
    def _owner_scope_complete(self) -> AuthorityCreateRequest:
        if self.owner_code == OwnerCode.HEAD_OFFICE and not self.head_office_id:
            raise ValueError("head_office_id is required for a head office authority")
        if self.owner_code == OwnerCode.FRANCHISEE and not (
            self.head_office_id and self.franchisee_id
        ):
            raise ValueError(
                "head_office_id and franchisee_id are required for a franchisee authority"
            )
        return self


class AuthorityUpdateRequest(BaseModel):
    """Master data of an existing authority (the tree is updated per program)."""

    name: str
    is_used: bool
    description: str | None = None

    @field_validator("name")
    @classmethod
    def _name_min_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("authority name must be at least 2 characters")
        return value


# ════════════════════════════════════════════════════════════════
# Response Envelopes
# ════════════════════════════════════════════════════════════════

T = TypeVar("T")


class ApiEnvelope(BaseModel, Generic[T]):
    """Standard response wrapper of the remote store."""

    success: bool
    message: str | None = None
    data: T | None = None


class Page(BaseModel, Generic[T]):
    """Spring-style page of results."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[T] = Field(default_factory=list)
    total_elements: int = Field(default=0, alias="totalElements")
    total_pages: int = Field(default=0, alias="totalPages")
    size: int = 0
    number: int = 0
    first: bool = True
    last: bool = True
    empty: bool = True


# ════════════════════════════════════════════════════════════════
# Actor Scope
# ════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Unrestricted:
    """The acting user may grant anything (super administrator)."""


@dataclass(frozen=True)
class Bounded:
    """The acting user may grant at most what their own tree grants them."""

    tree: PermissionTree = field(default=())


ActorScope = Unrestricted | Bounded


def scope_from_authority(details: PermissionTree | None) -> ActorScope:
    """
    Map the actor's own authority tree onto an explicit scope.

    The remote store marks super administrators by an empty tree; that
    convention stops here.
    """
    if not details:
        return Unrestricted()
    return Bounded(tree=tuple(details))
