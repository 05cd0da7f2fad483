"""
Authority Inspection Tool — print an authority's permission tree.

Fetches an authority from the remote store, resolves ceilings against the
acting user's own authority (unrestricted when none is given) and renders
the tree with the selected highlight filter. Flags above the ceiling are
marked. Exits non-zero when a program grants create/delete or update
without read.

Usage:
    python -m authority_engine.inspect 12
    python -m authority_engine.inspect 12 --filter update
    python -m authority_engine.inspect 12 --actor-authority 3 --base-url http://...
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import structlog
from rich.console import Console
from rich.tree import Tree

from authority_engine.client import AuthorityClient
from authority_engine.config import settings
from authority_engine.errors import RemoteRejectedError
from authority_engine.tree.cascade import matches_filter, satisfies_read_invariant
from authority_engine.tree.ceiling import resolve_ceilings
from authority_engine.tree.schema import (
    AuthorityFilter,
    PermissionField,
    PermissionNode,
    PermissionTree,
    Unrestricted,
    scope_from_authority,
)

console = Console()

FLAG_LABELS = {
    PermissionField.CAN_READ: "R",
    PermissionField.CAN_CREATE_DELETE: "CD",
    PermissionField.CAN_UPDATE: "U",
}


def configure_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def describe_node(node: PermissionNode, active: AuthorityFilter | None = None) -> str:
    """Rich markup label for one program."""
    flags = []
    for field, label in FLAG_LABELS.items():
        granted = getattr(node, field.value)
        allowed = getattr(node, field.ceiling)
        if granted and not allowed:
            flags.append(f"[bold red]{label}![/bold red]")
        elif granted:
            flags.append(f"[green]{label}[/green]")
        else:
            flags.append(f"[dim]{label}[/dim]")

    name = f"{node.program_name} [dim]#{node.program_id}[/dim]"
    if matches_filter(node, active):
        name = f"[reverse]{name}[/reverse]"
    return f"{name}  {' '.join(flags)}"


def render_tree(
    tree: PermissionTree,
    title: str,
    active: AuthorityFilter | None = None,
) -> Tree:
    root = Tree(f"[bold blue]{title}[/bold blue]")

    def add(parent: Tree, nodes: PermissionTree) -> None:
        for node in nodes:
            add(parent.add(describe_node(node, active)), node.children)

    add(root, tree)
    return root


async def _load(
    client: AuthorityClient,
    authority_id: int,
    actor_authority_id: int | None,
) -> tuple[str, PermissionTree]:
    detail = await client.fetch_authority_detail(authority_id)
    if actor_authority_id is None:
        scope = Unrestricted()
    else:
        actor = await client.fetch_authority_detail(actor_authority_id)
        scope = scope_from_authority(actor.details)
    title = f"{detail.name} ({detail.owner_code})"
    return title, resolve_ceilings(scope, detail.details)


async def run_inspect(
    client: AuthorityClient,
    authority_id: int,
    actor_authority_id: int | None = None,
    active: AuthorityFilter | None = None,
) -> bool:
    """
    Fetch and print one authority.

    Returns:
        True if every program satisfies the read rule, False otherwise.
    """
    log = structlog.get_logger()
    async with client:
        title, tree = await _load(client, authority_id, actor_authority_id)

    log.info(
        "authority_engine.inspect.fetched",
        authority_id=authority_id,
        actor_authority_id=actor_authority_id,
        roots=len(tree),
    )
    console.print(render_tree(tree, title, active))

    if satisfies_read_invariant(tree):
        return True
    console.print("[bold red]✗ Some programs grant create/delete or update without read[/bold red]")
    return False


def main() -> None:
    parser = argparse.ArgumentParser(description="Print an authority's permission tree")
    parser.add_argument("authority_id", type=int)
    parser.add_argument(
        "--filter",
        choices=[f.value for f in AuthorityFilter],
        default=AuthorityFilter.NONE.value,
        help="Highlight programs granting this permission",
    )
    parser.add_argument(
        "--actor-authority",
        type=int,
        default=None,
        help="Authority of the acting user, for ceilings (unrestricted if omitted)",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Remote store URL (defaults to .env settings)",
    )
    args = parser.parse_args()

    configure_logging()
    client = AuthorityClient.from_settings(settings)
    if args.base_url:
        client.base_url = args.base_url.rstrip("/")

    try:
        ok = asyncio.run(
            run_inspect(
                client,
                args.authority_id,
                actor_authority_id=args.actor_authority,
                active=AuthorityFilter(args.filter),
            )
        )
    except RemoteRejectedError as exc:
        structlog.get_logger().error("authority_engine.inspect.failed", error=str(exc))
        sys.exit(2)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
