"""
Command-line adapter for the inline image-generation engine.

Interface responsibilities:
- `process`: generate pending instructions of one chat message.
- `regenerate`: explicit regenerate command (failed only, or `--all`).

Request lifecycle:
1. Parse arguments and configure logging (`--verbose` -> DEBUG).
2. Build the engine over the given chat file and image directory.
3. Run the command with `asyncio.run` and print one line per job.

Error handling strategy:
- `ConfigurationError` prints the problems and exits with status 2.
- A skipped message (user-authored, unknown, disabled) exits with status 1.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import asyncio
import logging
import sys

from inline_imagegen.api.runtime import build_engine
from inline_imagegen.core.engine import RunReport
from inline_imagegen.core.errors import ConfigurationError
from inline_imagegen.parsing.models import ParseMode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="inline-imagegen",
        description="Generate images for instruction tags embedded in chat messages.",
    )
    parser.add_argument("--chat", help="Chat JSON file (default: $IIG_CHAT_FILE or chat.json)")
    parser.add_argument("--images", help="Image output directory (default: $IIG_IMAGE_DIR)")
    parser.add_argument("--url-prefix", help="Public prefix for saved images")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)

    process = commands.add_parser("process", help="Generate pending images of a message")
    process.add_argument("message_id")
    process.add_argument(
        "--force-all", action="store_true", help="Regenerate every attribute-embedded tag"
    )

    regenerate = commands.add_parser("regenerate", help="Regenerate failed images of a message")
    regenerate.add_argument("message_id")
    regenerate.add_argument(
        "--all", dest="all_tags", action="store_true", help="Regenerate every tag, not only failures"
    )
    return parser


def print_report(report: RunReport) -> None:
    """Print one line per job followed by a summary."""
    for job in report.jobs:
        detail = job.resource if job.resource else job.last_error
        print(f"[{job.state.value}] {job.instruction.prompt[:60]!r} -> {detail}")
    print(f"{len(report.done)} done, {len(report.failed)} failed")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = build_engine(args.chat, args.images, args.url_prefix)

    try:
        if args.command == "process":
            mode = ParseMode.FORCE_ALL if args.force_all else ParseMode.NORMAL
            report = asyncio.run(engine.process_message(args.message_id, mode))
        else:
            report = asyncio.run(
                engine.regenerate(args.message_id, failed_only=not args.all_tags)
            )
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if report is None:
        print(f"Message {args.message_id} was skipped", file=sys.stderr)
        return 1

    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
