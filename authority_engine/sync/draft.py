"""
Create-mode drafts.

A new authority starts as an in-memory tree shaped like the program
catalog, with every flag cleared and ceilings taken from the acting user.
Nothing is persisted until the draft is saved, at which point the tree is
flattened and submitted in one request.
"""

from __future__ import annotations

from pydantic import ValidationError

from authority_engine.errors import DraftValidationError
from authority_engine.tree.cascade import flatten_tree
from authority_engine.tree.ceiling import resolve_ceilings
from authority_engine.tree.schema import (
    ActorScope,
    AuthorityCreateRequest,
    PermissionNode,
    PermissionTree,
    ProgramNode,
)


def _convert(programs: list[ProgramNode]) -> PermissionTree:
    # Catalog entries without an id are placeholders and have no program to grant
    return tuple(
        PermissionNode(
            program_id=program.id,
            program_name=program.name,
            children=_convert(program.children),
        )
        for program in programs
        if program.id is not None
    )


def synthesize_draft(catalog: list[ProgramNode], scope: ActorScope) -> PermissionTree:
    """Build an all-false permission tree from the program catalog."""
    return resolve_ceilings(scope, _convert(catalog))


def build_create_request(
    owner_code: str,
    tree: PermissionTree,
    name: str,
    is_used: bool = True,
    description: str | None = None,
    head_office_id: int | None = None,
    franchisee_id: int | None = None,
) -> AuthorityCreateRequest:
    """
    Validate the draft master data and attach the flattened tree.

    Raises:
        DraftValidationError: With one message per offending field.
    """
    try:
        return AuthorityCreateRequest(
            owner_code=owner_code,
            head_office_id=head_office_id,
            franchisee_id=franchisee_id,
            name=name,
            is_used=is_used,
            description=description,
            details=flatten_tree(tree),
        )
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for error in exc.errors():
            key = ".".join(str(part) for part in error["loc"]) or "request"
            errors.setdefault(key, error["msg"])
        raise DraftValidationError(errors) from exc
