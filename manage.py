"""Operator CLI for the call-to-account resolution engine.

Every command runs one ResolutionService operation and prints its result as
JSON. Failures print a JSON error payload to stderr and exit non-zero.

Usage:
  # Review queue
  python manage.py queue --tenant <uuid> --search acme --page-size 10
  python manage.py stats --tenant <uuid>
  python manage.py search --tenant <uuid> --query northwind

  # Resolve, dismiss, create
  python manage.py resolve --tenant <uuid> --call <uuid> --account <uuid>
  python manage.py bulk-resolve --tenant <uuid> --account <uuid> --call <uuid> --call <uuid>
  python manage.py dismiss --tenant <uuid> --call <uuid>
  python manage.py create-account --tenant <uuid> --call <uuid> --name "Fabrikam" \
      --domain fabrikam.example
  python manage.py auto-resolve --tenant <uuid> --call <uuid>

  # Merge duplicates
  python manage.py duplicates --tenant <uuid>
  python manage.py preview-merge --tenant <uuid> --source <uuid> --target <uuid>
  python manage.py merge --tenant <uuid> --source <uuid> --target <uuid> --initiated-by ops
  python manage.py merge-runs --tenant <uuid>
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Optional

from pydantic import BaseModel

from db.connection import dispose_engine
from resolution.errors import ResolutionError
from resolution.service import ResolutionService

logger = logging.getLogger(__name__)


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_to_jsonable(item) for item in result]
    return result


async def run_command(args: argparse.Namespace, service: ResolutionService) -> Any:
    """Dispatch parsed arguments to the matching service call."""
    tenant = args.tenant
    if args.command == "queue":
        return await service.list_queue(
            tenant,
            {
                "page": args.page,
                "page_size": args.page_size,
                "search": args.search,
                "sort_by": args.sort_by,
                "sort_order": args.sort_order,
            },
        )
    if args.command == "stats":
        return await service.get_queue_stats(tenant)
    if args.command == "search":
        return await service.search_accounts(tenant, args.query, args.limit)
    if args.command == "resolve":
        return await service.resolve_call(tenant, args.call, args.account)
    if args.command == "bulk-resolve":
        return await service.bulk_resolve(tenant, args.call, args.account)
    if args.command == "dismiss":
        return await service.dismiss_calls(tenant, args.call)
    if args.command == "create-account":
        return await service.create_account_from_call(tenant, args.call, args.name, args.domain)
    if args.command == "auto-resolve":
        return await service.auto_resolve_call(tenant, args.call)
    if args.command == "merge":
        return await service.merge_accounts(
            tenant,
            args.source,
            args.target,
            initiated_by=args.initiated_by,
            notes=args.notes,
        )
    if args.command == "duplicates":
        return await service.find_duplicates(tenant)
    if args.command == "preview-merge":
        return await service.preview_merge(tenant, args.source, args.target)
    if args.command == "merge-runs":
        return await service.list_merge_runs(tenant, args.limit)
    raise ValueError(f"Unknown command: {args.command}")


async def _run(args: argparse.Namespace, service: Optional[ResolutionService]) -> Any:
    try:
        return await run_command(args, service or ResolutionService())
    finally:
        await dispose_engine()


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Call-to-account resolution: review queue, resolution and merge"
    )
    sub = parser.add_subparsers(dest="command")

    def command(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--tenant", required=True, help="Tenant id (UUID)")
        return cmd

    queue = command("queue", "List unresolved calls with suggestions")
    queue.add_argument("--page", type=int, default=1)
    queue.add_argument("--page-size", type=int, default=25)
    queue.add_argument("--search", default=None, help="Substring of title or participant")
    queue.add_argument("--sort-by", choices=["occurred_at", "match_confidence"], default="occurred_at")
    queue.add_argument("--sort-order", choices=["asc", "desc"], default="desc")

    command("stats", "Queue counts and confidence distribution")

    search = command("search", "Search accounts by name or domain")
    search.add_argument("--query", default="")
    search.add_argument("--limit", type=int, default=20)

    resolve = command("resolve", "Assign a call to an account")
    resolve.add_argument("--call", required=True)
    resolve.add_argument("--account", required=True)

    bulk = command("bulk-resolve", "Assign several calls to one account (all or nothing)")
    bulk.add_argument("--call", action="append", required=True, help="Repeat for each call")
    bulk.add_argument("--account", required=True)

    dismiss = command("dismiss", "Hide calls from the review queue")
    dismiss.add_argument("--call", action="append", required=True, help="Repeat for each call")

    create = command("create-account", "Create an account from a call and resolve it")
    create.add_argument("--call", required=True)
    create.add_argument("--name", required=True)
    create.add_argument("--domain", default=None, help="Primary domain (optional)")

    auto = command("auto-resolve", "Run matching on a call and assign it when unambiguous")
    auto.add_argument("--call", required=True)

    merge = command("merge", "Merge a duplicate account into another (irreversible)")
    merge.add_argument("--source", required=True, help="Account that disappears")
    merge.add_argument("--target", required=True, help="Account that survives")
    merge.add_argument("--initiated-by", default=None)
    merge.add_argument("--notes", default=None)

    command("duplicates", "List likely duplicate account pairs")

    preview = command("preview-merge", "Compare two accounts before merging")
    preview.add_argument("--source", required=True)
    preview.add_argument("--target", required=True)

    runs = command("merge-runs", "Show recent merges")
    runs.add_argument("--limit", type=int, default=50)

    return parser


def main(argv: Optional[list[str]] = None, service: Optional[ResolutionService] = None) -> int:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(levelname)s %(name)s %(message)s",
    )
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    try:
        result = asyncio.run(_run(args, service))
    except ResolutionError as exc:
        print(json.dumps(exc.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1

    print(json.dumps(_to_jsonable(result), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
