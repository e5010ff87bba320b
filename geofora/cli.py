"""
GEOFORA interlinking command line.

Usage:
    python -m geofora content --source forum --forum-id 7
    python -m geofora suggest --forum question:12 --forum answer:40 --page 3 --page 9
    python -m geofora strategy --forum-id 7 --preview
    python -m geofora strategy --forum-id 7 --session abc123
    python -m geofora links --type main_page --id 3 --direction target
    python -m geofora relevant --type question --id 12
    python -m geofora stats --forum-id 7
    python -m geofora plan --session abc123 --set professional
    python -m geofora serve --port 8765
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from geofora.config import Settings
from geofora.errors import InterlinkError
from geofora.models import ContentRef, StrategyPreview
from geofora.plans import PlanType
from geofora.service import InterlinkingService, build_service

logger = logging.getLogger("geofora.cli")


def _parse_ref(value: str) -> ContentRef:
    """Parse ``type:id``, e.g. ``question:12``."""
    ctype, sep, raw_id = value.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected type:id, got {value!r}")
    try:
        return ContentRef(id=int(raw_id), type=ctype)
    except (ValueError, InterlinkError) as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_candidates(candidates) -> None:
    if not candidates:
        print("No candidates.")
        return
    for i, c in enumerate(candidates, 1):
        arrow = "<->" if c.bidirectional else "->"
        print(f"  {i}. {c.source} {arrow} {c.target} (score: {c.relevance_score:.2f})")
        print(f"     Anchor: \"{c.anchor_text}\"")
        if c.target_title:
            print(f"     Target: {c.target_title}")


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


def _build_cli_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="geofora",
        description="Bidirectional interlinking between forum Q&A and main-site pages",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # content
    p_content = subparsers.add_parser("content", help="List interlinkable content")
    p_content.add_argument("--source", choices=["forum", "main_site"], default="forum")
    p_content.add_argument("--limit", type=int, default=20, help="Max items (default: 20)")
    p_content.add_argument("--forum-id", type=int, default=None, help="Forum ID (forum source only)")

    # suggest
    p_suggest = subparsers.add_parser("suggest", help="Suggest links from forum items to main-site pages")
    p_suggest.add_argument("--forum", type=_parse_ref, action="append", default=[],
                           help="Forum item as type:id (repeatable)")
    p_suggest.add_argument("--page", type=int, action="append", default=[],
                           help="Main-site page ID (repeatable)")
    p_suggest.add_argument("--max", type=int, default=3, help="Max suggestions per item (default: 3)")
    p_suggest.add_argument("--reverse", action="store_true", help="Also rank pages against forum items")

    # strategy
    p_strategy = subparsers.add_parser("strategy", help="Run the interlinking strategy for a forum")
    p_strategy.add_argument("--forum-id", type=int, required=True, help="Forum ID")
    p_strategy.add_argument("--preview", action="store_true", help="Rank candidates without writing")
    p_strategy.add_argument("--limit", type=int, default=None, help="Items per content source")
    p_strategy.add_argument("--cap", type=int, default=None, help="Max candidates per forum item")
    p_strategy.add_argument("--session", default=None, help="Session whose plan gates the commit")

    # links
    p_links = subparsers.add_parser("links", help="List interlinks touching one item")
    p_links.add_argument("--type", required=True, help="question, answer, or main_page")
    p_links.add_argument("--id", type=int, required=True, help="Content ID")
    p_links.add_argument("--direction", choices=["source", "target"], default="source")

    # relevant
    p_relevant = subparsers.add_parser("relevant", help="Show locally scored related content")
    p_relevant.add_argument("--type", required=True, help="question, answer, or main_page")
    p_relevant.add_argument("--id", type=int, required=True, help="Content ID")
    p_relevant.add_argument("--limit", type=int, default=5, help="Max items (default: 5)")

    # stats
    p_stats = subparsers.add_parser("stats", help="Link-type distribution and monthly growth")
    p_stats.add_argument("--forum-id", type=int, default=None, help="Restrict to one forum")

    # plan
    p_plan = subparsers.add_parser("plan", help="Show or change a session's selected plan")
    p_plan.add_argument("--session", required=True, help="Session ID")
    group = p_plan.add_mutually_exclusive_group()
    group.add_argument("--set", choices=[p.value for p in PlanType], default=None)
    group.add_argument("--clear", action="store_true")

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=None, help="Port (default: GEOFORA_API_PORT)")

    return parser


async def _run_cli(args: argparse.Namespace, service: InterlinkingService) -> None:
    """Execute the CLI command."""
    as_json = args.json

    if args.command == "content":
        items = await service.get_interlinkable_content(args.source, limit=args.limit, forum_id=args.forum_id)
        if as_json:
            _print_json([item.to_dict() for item in items])
            return
        print(f"{len(items)} interlinkable {args.source} items:\n")
        for item in items:
            print(f"  [{item.ref}] {item.title}")

    elif args.command == "suggest":
        pages = [ContentRef(id=pid, type="main_page") for pid in args.page]
        candidates = await service.get_bidirectional_suggestions(
            args.forum, pages, max_suggestions_per_item=args.max, include_reverse=args.reverse,
        )
        if as_json:
            _print_json([c.to_dict() for c in candidates])
            return
        print(f"{len(candidates)} suggestions:\n")
        _print_candidates(candidates)

    elif args.command == "strategy":
        session = service.plans(args.session).session() if args.session else None
        outcome = await service.generate_interlinking_strategy(
            args.forum_id,
            preview_only=args.preview,
            limit=args.limit,
            per_item_cap=args.cap,
            session=session,
        )
        if as_json:
            _print_json(outcome.to_dict())
        elif isinstance(outcome, StrategyPreview):
            print(f"Preview for forum {args.forum_id}: {len(outcome.candidates)} candidates\n")
            _print_candidates(outcome.candidates)
        else:
            print(outcome.summary())

    elif args.command == "links":
        if args.direction == "source":
            links = await service.list_links_for_source(args.type, args.id)
        else:
            links = await service.list_links_for_target(args.type, args.id)
        if as_json:
            _print_json([link.to_dict() for link in links])
            return
        print(f"{len(links)} links with {args.type}:{args.id} as {args.direction}:\n")
        for link in links:
            mode = "auto" if link.automatic else "manual"
            print(f"  #{link.id} {link.source} -> {link.target} [{mode}] \"{link.anchor_text}\"")

    elif args.command == "relevant":
        data = await service.get_relevant_content(ContentRef(id=args.id, type=args.type), limit=args.limit)
        if as_json:
            _print_json(data)
            return
        for row in data:
            print(f"  [{row['type']}:{row['id']}] {row['title']} (score: {row['relevance_score']:.2f})")

    elif args.command == "stats":
        stats = await service.get_interlink_stats(args.forum_id)
        if as_json:
            _print_json(stats)
            return
        scope = f"forum {args.forum_id}" if args.forum_id is not None else "all forums"
        print(f"=== Interlink stats: {scope} ===")
        print(f"  Total links:     {stats['total']}")
        print(f"  Automatic:       {stats['automatic']}")
        print(f"  Manual:          {stats['manual']}")
        print(f"  Avg relevance:   {stats['avg_relevance']:.2f}")
        for row in stats["link_types"]:
            print(f"  {row['name']}: {row['value']}")
        for row in stats["growth"]:
            print(f"  {row['month']}: {row['links']}")

    elif args.command == "plan":
        plans = service.plans(args.session)
        if args.set:
            plans.set_selected_plan(PlanType(args.set))
        elif args.clear:
            plans.clear_selected_plan()
        plan = plans.get_selected_plan()
        if as_json:
            _print_json({"session": args.session, "plan": plan.value if plan else None})
        else:
            print(f"Session {args.session}: {plan.value if plan else 'no plan selected'}")

    else:
        print("No command specified. Use --help for available commands.")


async def _run_with_service(args: argparse.Namespace) -> None:
    service = build_service()
    try:
        await _run_cli(args, service)
    finally:
        await service.close()


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(
        "geofora.api:app",
        host=args.host,
        port=args.port or settings.api_port,
        reload=False,
        log_level="info",
    )


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = _build_cli_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        _serve(args)
        return

    try:
        asyncio.run(_run_with_service(args))
    except KeyboardInterrupt:
        print("\nAborted.")
        sys.exit(130)
    except InterlinkError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    except Exception as exc:
        logger.exception("CLI error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
