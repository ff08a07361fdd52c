"""Entry point for running the CLI as a module: ``python -m cli``."""

import argparse
import asyncio
import sys

from .config import CLIConfig
from .medifly_cli import main


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Admin CLI for the MediFly API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--host", type=str, default="localhost", help="Server host (default: localhost)")
    parser.add_argument("--port", type=int, default=8080, help="Server port (default: 8080)")
    parser.add_argument("--user", type=str, default=None, help="User id for usage metering")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Embedding coverage and the current indexing job")

    index = commands.add_parser("index", help="Start a background indexing job")
    index.add_argument("--batch-size", type=int, default=None)
    index.add_argument("--force", action="store_true", help="Re-embed hospitals that already have one")
    index.add_argument("--delay-ms", type=int, default=None, help="Pause between batches")
    index.add_argument("--watch", action="store_true", help="Poll progress until the job ends")

    progress = commands.add_parser("progress", help="Progress of the current indexing job")
    progress.add_argument("--watch", action="store_true")

    reindex = commands.add_parser("reindex", help="Re-embed specific hospitals")
    reindex.add_argument("hospital_ids", nargs="+", metavar="ID")

    commands.add_parser("reset", help="Clear every hospital embedding")

    chat = commands.add_parser("chat", help="Interactive concierge chat")
    chat.add_argument("--show-thinking", action="store_true", help="Show the model's reasoning")

    return parser.parse_args(argv)


def cli_entry() -> None:
    args = parse_args()
    config = CLIConfig(host=args.host, port=args.port, user_id=args.user)
    options = {}
    if args.command == "index":
        options = dict(
            batch_size=args.batch_size,
            force=args.force,
            delay_ms=args.delay_ms,
            watch=args.watch,
        )
    elif args.command == "progress":
        options = dict(watch=args.watch)
    elif args.command == "reindex":
        options = dict(hospital_ids=args.hospital_ids)

    try:
        code = asyncio.run(
            main(
                config,
                args.command,
                debug=args.debug,
                show_thinking=getattr(args, "show_thinking", False),
                **options,
            )
        )
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    cli_entry()
