"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import LostFoundError
from ..matching import MatchingEngine
from ..notifications import EmailOutbox
from ..schemas import Actor, ItemType
from ..state_store import StateStore

logger = logging.getLogger(__name__)

# Operator actor for CLI-triggered lookups; user id 0 owns no items
CLI_ACTOR = Actor(user_id=0, role="admin")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="campus-lostfound",
        description="Campus lost & found: item matching, claims and pickup",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create the state database and run migrations")

    subparsers.add_parser("auto-match", help="Score and persist matches for all approved items")

    match_parser = subparsers.add_parser("match-item", help="Score candidates for one item")
    target = match_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--lost", type=int, metavar="ID", help="Lost item ID")
    target.add_argument("--found", type=int, metavar="ID", help="Found item ID")

    subparsers.add_parser("dispatch-emails", help="Send due emails from the outbox")

    subparsers.add_parser("status", help="Show claim, match and outbox statistics")

    serve_parser = subparsers.add_parser("serve", help="Run the JSON API server")
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to listen on (default: 8000)",
    )

    return parser


def _open_store(config: Config) -> StateStore:
    return StateStore(config.state_db_path, busy_timeout=config.db_busy_timeout_seconds)


def cmd_init_db(config: Config, config_path: Path) -> int:
    """Create the database and, if absent, a default config file."""
    if not config_path.exists():
        create_default_config(config_path)
        print(f"✓ Wrote default config to {config_path}")

    store = _open_store(config)
    print(f"✓ State database ready at {store.db_path}")
    return 0


def cmd_auto_match(config: Config) -> int:
    """Run a full matching sweep."""
    print("🔍 Running auto-match over all approved items...")
    engine = MatchingEngine(_open_store(config), config)
    summary = engine.run_auto_match()

    print(f"\n✓ Processed {summary.processed} item(s)")
    print(f"  Created:  {summary.created}")
    print(f"  Updated:  {summary.updated}")
    print(f"  Skipped:  {summary.skipped}")
    if summary.errors:
        print(f"  Errors:   {summary.errors}")
        return 1
    return 0


def cmd_match_item(config: Config, lost_id: int | None, found_id: int | None) -> int:
    """Rank and persist candidates for one item."""
    if lost_id is not None:
        item_id, direction = lost_id, ItemType.LOST
    else:
        item_id, direction = found_id, ItemType.FOUND

    engine = MatchingEngine(_open_store(config), config)
    try:
        candidates = engine.match_item(item_id, direction, CLI_ACTOR)
    except LostFoundError as e:
        print(f"❌ {e.message}")
        return 1

    print(f"\n{direction.value.capitalize()} item #{item_id}: {len(candidates)} candidate(s)")
    for candidate in candidates[: config.matching.top_n]:
        print(
            f"  [{candidate.counterpart_id}] {candidate.title} "
            f"{candidate.score}% ({candidate.confidence.value})"
        )
    return 0


def cmd_dispatch_emails(config: Config) -> int:
    """Send due emails once."""
    if not config.email.enabled:
        print("Email delivery is disabled (email.enabled: false); outbox left untouched")
        return 0

    outbox = EmailOutbox(_open_store(config), config)
    summary = outbox.dispatch_pending()
    print(f"✓ Sent {summary.sent}, retrying {summary.retried}, failed {summary.failed}")
    return 1 if summary.failed else 0


def cmd_status(config: Config) -> int:
    """Show counts by status."""
    stats = _open_store(config).get_stats()

    print("\n📊 Lost & Found Status")
    print("=" * 40)
    for section, title in (
        ("claims", "Claims"),
        ("matches", "Matches"),
        ("email_outbox", "Email outbox"),
    ):
        counts = stats.get(section, {})
        print(f"  {title} ({sum(counts.values())} total)")
        for status, count in sorted(counts.items()):
            print(f"    {status:<12} {count}")
    print()

    return 0


def cmd_serve(config: Config, config_path: Path, host: str, port: int) -> int:
    """Start the JSON API."""
    from ..web.app import run_server

    try:
        run_server(
            host=host,
            port=port,
            config_path=str(config_path) if config_path.exists() else None,
            state_db_path=str(config.state_db_path),
        )
    except KeyboardInterrupt:
        print("\n✓ Server stopped")

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"  - {error}")
        return 1

    # Route to command
    if parsed.command == "init-db":
        return cmd_init_db(config, parsed.config)
    elif parsed.command == "auto-match":
        return cmd_auto_match(config)
    elif parsed.command == "match-item":
        return cmd_match_item(config, parsed.lost, parsed.found)
    elif parsed.command == "dispatch-emails":
        return cmd_dispatch_emails(config)
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "serve":
        return cmd_serve(config, parsed.config, parsed.host, parsed.port)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
