"""
Synchronization Controller — optimistic editing of one authority's permission tree.

The controller is the only writer of the tree. Every toggle follows the
same path:

1. Preconditions:     ceilings and the read rule are checked; a rejected
                      toggle changes nothing and sends nothing.
2. Optimistic commit: the cascade result becomes the live tree at once.
3. Dispatch:          in edit mode the target's new flags are sent to the
                      remote store, tagged with the next global sequence
                      number, and the target is marked in flight.
4. Reconcile:         only the response of the latest request may touch
                      the tree: success replaces it with the server's tree,
                      failure restores the snapshot taken before the toggle.
                      Older responses are discarded.

The sequence counter is shared by the whole tree, not kept per program, so
a toggle on one program supersedes outstanding requests on every other
program. Their optimistic values stay in place; only the server
reconciliation of the superseded request is dropped.

In create mode the tree is a local draft: toggles stop after step 2 and
the whole tree is submitted once by ``save_draft``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from authority_engine.client import AuthorityStore
from authority_engine.config import settings
from authority_engine.errors import (
    CeilingViolationError,
    CopySourceUnavailableError,
    OwnershipMismatchError,
    PermissionUpdateFailed,
    ReadRequiredError,
    RemoteRejectedError,
)
from authority_engine.sync.draft import build_create_request, synthesize_draft
from authority_engine.tree.cascade import (
    apply_toggle,
    find_node,
    iter_nodes,
    matches_filter,
    validate_tree,
)
from authority_engine.tree.ceiling import clamp_to_ceilings, exceeds_ceiling, resolve_ceilings
from authority_engine.tree.schema import (
    ActorScope,
    AuthorityDetail,
    AuthorityFilter,
    AuthoritySummary,
    PermissionField,
    PermissionNode,
    PermissionTree,
    owner_group_of,
)

logger = logging.getLogger(__name__)


class EditMode(str, enum.Enum):
    """Whether the authority already exists remotely."""

    CREATE = "create"
    EDIT = "edit"


class ToggleState(str, enum.Enum):
    """Lifecycle of a single toggle."""

    NOOP = "noop"  # target program not in the tree
    LOCAL = "local"  # create mode, never dispatched
    OPTIMISTIC = "optimistic"  # committed locally, request outstanding
    CONFIRMED = "confirmed"  # server tree adopted
    ROLLED_BACK = "rolled_back"  # request failed, snapshot restored
    SUPERSEDED = "superseded"  # outcome discarded, a newer request exists


@dataclass
class ToggleRecord:
    """One user toggle and what became of it."""

    program_id: int
    field: PermissionField
    value: bool
    snapshot: PermissionTree
    target: PermissionNode | None = None
    sequence: int | None = None
    state: ToggleState = ToggleState.OPTIMISTIC
    error: Exception | None = None

    @property
    def is_settled(self) -> bool:
        return self.state != ToggleState.OPTIMISTIC


class PermissionTreeController:
    """
    Owns the live permission tree of one authority editing session.

    Exposes the current tree, per-program in-flight markers, the toggle
    entry point and bulk copy to the presentation layer.
    """

    def __init__(
        self,
        tree: PermissionTree,
        scope: ActorScope,
        mode: EditMode = EditMode.EDIT,
        store: AuthorityStore | None = None,
        authority_id: int | None = None,
        owner_code: str | None = None,
    ) -> None:
        """
        Args:
            tree: Initial tree; ceilings are (re)resolved from ``scope``.
            scope: What the acting user may grant.
            mode: CREATE for a local draft, EDIT for an existing authority.
            store: Remote store; required in edit mode.
            authority_id: Id of the edited authority; required in edit mode.
            owner_code: Ownership scope of the edited authority.
        """
        if mode == EditMode.EDIT and (store is None or authority_id is None):
            raise ValueError("Edit mode needs a store and an authority id")

        self.scope = scope
        self.mode = mode
        self.store = store
        self.authority_id = authority_id
        self.owner_code = owner_code
        self._tree: PermissionTree = resolve_ceilings(scope, tuple(tree))
        self._sequence = 0
        self._in_flight: dict[int, int] = {}

    @classmethod
    async def open(
        cls,
        store: AuthorityStore,
        authority_id: int,
        scope: ActorScope,
    ) -> PermissionTreeController:
        """Load an existing authority for editing."""
        detail = await store.fetch_authority_detail(authority_id)
        logger.info(
            "Authority opened: id=%d owner=%s programs=%d",
            authority_id, detail.owner_code, sum(1 for _ in iter_nodes(detail.details)),
        )
        return cls(
            detail.details,
            scope,
            mode=EditMode.EDIT,
            store=store,
            authority_id=authority_id,
            owner_code=detail.owner_code,
        )

    @classmethod
    async def new_draft(
        cls,
        store: AuthorityStore,
        scope: ActorScope,
        owner_code: str,
        catalog_kind: str | None = None,
    ) -> PermissionTreeController:
        """Start a new authority from the program catalog."""
        catalog = await store.fetch_program_catalog(
            catalog_kind or settings.program_catalog_kind
        )
        return cls(
            synthesize_draft(catalog, scope),
            scope,
            mode=EditMode.CREATE,
            store=store,
            owner_code=owner_code,
        )

    # ── Presentation State ─────────────────────────────────────

    @property
    def tree(self) -> PermissionTree:
        return self._tree

    @property
    def sequence(self) -> int:
        """Sequence number of the most recently issued request."""
        return self._sequence

    @property
    def in_flight(self) -> frozenset[int]:
        return frozenset(self._in_flight)

    def is_in_flight(self, program_id: int) -> bool:
        return program_id in self._in_flight

    def highlighted(self, active: AuthorityFilter | None) -> set[int]:
        """Programs matching the active highlight filter."""
        return {
            node.program_id
            for node in iter_nodes(self._tree)
            if matches_filter(node, active)
        }

    # ── Toggle ─────────────────────────────────────────────────

    def stage(
        self,
        program_id: int,
        field: PermissionField | str,
        value: bool,
    ) -> ToggleRecord:
        """
        Check preconditions, commit the cascade locally and, in edit mode,
        claim the next sequence number. Never suspends.

        Raises:
            ReadRequiredError: Granting create/delete or update on a program
                without read.
            CeilingViolationError: The cascade would change some program in
                the target's subtree to a value above its ceiling. Values it
                leaves alone are not checked.
        """
        field = PermissionField(field)
        snapshot = self._tree

        node = find_node(snapshot, program_id)
        if node is None:
            logger.debug("Toggle ignored: program %d not in tree", program_id)
            return ToggleRecord(
                program_id=program_id,
                field=field,
                value=value,
                snapshot=snapshot,
                state=ToggleState.NOOP,
            )

        if value and field != PermissionField.CAN_READ and not node.can_read:
            raise ReadRequiredError(program_id, field.value, "read is not granted")

        result = apply_toggle(snapshot, program_id, field, value)
        before = {n.program_id: getattr(n, field.value) for n in iter_nodes((node,))}
        for changed in iter_nodes((result.target,)):
            granted = getattr(changed, field.value)
            if granted == before[changed.program_id]:
                continue
            if exceeds_ceiling(changed, field, granted):
                raise CeilingViolationError(
                    program_id,
                    field.value,
                    f"program {changed.program_id} does not allow {field.value}",
                )

        self._tree = result.tree
        record = ToggleRecord(
            program_id=program_id,
            field=field,
            value=value,
            snapshot=snapshot,
            target=result.target,
        )

        if self.mode == EditMode.CREATE:
            record.state = ToggleState.LOCAL
            return record

        self._sequence += 1
        record.sequence = self._sequence
        self._in_flight[program_id] = self._in_flight.get(program_id, 0) + 1
        logger.debug(
            "Toggle committed: seq=%d program=%d %s=%s",
            record.sequence, program_id, field.value, value,
        )
        return record

    async def synchronize(self, record: ToggleRecord) -> ToggleRecord:
        """
        Send a staged toggle to the remote store and settle it.

        Raises:
            PermissionUpdateFailed: The request failed while still the
                latest; the tree was rolled back to ``record.snapshot``.
        """
        if record.is_settled:
            return record

        try:
            detail = await self.store.update_node_permission(
                self.authority_id, record.program_id, record.target.flags()
            )
        except Exception as exc:
            record.error = exc
            if record.sequence == self._sequence:
                self._tree = record.snapshot
                record.state = ToggleState.ROLLED_BACK
                logger.warning(
                    "Toggle rolled back: seq=%d program=%d (%s)",
                    record.sequence, record.program_id, exc,
                )
                raise PermissionUpdateFailed(record) from exc
            record.state = ToggleState.SUPERSEDED
            logger.debug("Stale failure discarded: seq=%d", record.sequence)
        else:
            if record.sequence == self._sequence:
                self._tree = resolve_ceilings(self.scope, detail.details)
                record.state = ToggleState.CONFIRMED
                logger.debug("Toggle confirmed: seq=%d", record.sequence)
            else:
                record.state = ToggleState.SUPERSEDED
                logger.debug("Stale response discarded: seq=%d", record.sequence)
        finally:
            self._release(record.program_id)

        return record

    async def toggle(
        self,
        program_id: int,
        field: PermissionField | str,
        value: bool,
    ) -> ToggleRecord:
        """Stage a toggle and, in edit mode, wait for it to settle."""
        record = self.stage(program_id, field, value)
        return await self.synchronize(record)

    def _release(self, program_id: int) -> None:
        remaining = self._in_flight.get(program_id, 0) - 1
        if remaining > 0:
            self._in_flight[program_id] = remaining
        else:
            self._in_flight.pop(program_id, None)

    # ── Bulk Copy ──────────────────────────────────────────────

    def apply_bulk_copy(self, source_tree: PermissionTree) -> PermissionTree:
        """
        Replace the whole tree with another authority's values.

        Ceilings are never taken from the source; they are resolved for
        the copied shape and flags above them are lowered. Outstanding
        requests are superseded so none of their responses can overwrite
        the copy.
        """
        source = tuple(source_tree)
        validate_tree(source)
        copied = clamp_to_ceilings(resolve_ceilings(self.scope, source))

        self._sequence += 1
        self._tree = copied
        logger.info(
            "Bulk copy applied: authority=%s programs=%d",
            self.authority_id, sum(1 for _ in iter_nodes(copied)),
        )
        return copied

    async def copy_candidates(self) -> list[AuthoritySummary]:
        """Authorities with the same owner code that can seed this one."""
        if not self.owner_code:
            return []
        page = await self.store.fetch_authority_list(
            owner_group=owner_group_of(self.owner_code),
            page=1,
            size=settings.copy_candidate_page_size,
        )
        return [
            summary
            for summary in page.content
            if summary.owner_code == self.owner_code and summary.id != self.authority_id
        ]

    async def copy_from_authority(self, authority_id: int) -> PermissionTree:
        """
        Fetch another authority and bulk copy its tree.

        Raises:
            CopySourceUnavailableError: The source could not be fetched;
                the tree is untouched.
            OwnershipMismatchError: The source has a different owner code.
        """
        try:
            source = await self.store.fetch_authority_detail(authority_id)
        except RemoteRejectedError as exc:
            raise CopySourceUnavailableError(
                f"Authority {authority_id} could not be fetched for copy"
            ) from exc

        if self.owner_code and source.owner_code != self.owner_code:
            raise OwnershipMismatchError(
                f"Authority {authority_id} is owned by {source.owner_code}, "
                f"not {self.owner_code}"
            )
        return self.apply_bulk_copy(source.details)

    # ── Save ───────────────────────────────────────────────────

    async def save_draft(self, name: str, **master: Any) -> AuthorityDetail:
        """
        Submit a create-mode draft as a new authority.

        Raises:
            DraftValidationError: Master data is incomplete.
            RemoteRejectedError: The store refused the new authority.
        """
        if self.mode != EditMode.CREATE:
            raise ValueError("Only create-mode drafts are saved in bulk")
        if self.owner_code is None:
            raise ValueError("A draft needs an owner code")

        request = build_create_request(self.owner_code, self._tree, name, **master)
        detail = await self.store.create_authority(request)
        logger.info("Draft saved: authority=%d programs=%d", detail.id, len(request.details))
        return detail
