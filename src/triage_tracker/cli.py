"""Command line entry point: run the startup lookup for one email."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import asdict
from pathlib import Path

from triage_tracker.app import create_session
from triage_tracker.host.mail import EmailMetadata, StaticMailHost, UserProfile
from triage_tracker.logging_utils import configure_logging
from triage_tracker.utils.serialization import json_default

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="triage-tracker",
        description="Look up tracked requests for an email and print the resulting view.",
    )
    parser.add_argument(
        "--email",
        required=True,
        help="Path to a JSON file with the email metadata (subject, senderEmail, ...)",
    )
    parser.add_argument("--user-email", default="", help="Address of the acting user")
    parser.add_argument("--user-name", default="", help="Display name of the acting user")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override TRACKER_LOG_LEVEL for this run (DEBUG also logs HTTP requests)",
    )
    return parser


def _load_metadata(path: str) -> EmailMetadata:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return EmailMetadata.from_mapping(data)


async def _run(args: argparse.Namespace) -> dict[str, object]:
    host = StaticMailHost(
        _load_metadata(args.email),
        UserProfile(display_name=args.user_name, email_address=args.user_email),
    )
    session = create_session(host)
    try:
        snapshot = await session.start()
    finally:
        await session.aclose()
    return asdict(snapshot)


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        result = asyncio.run(_run(args))
    except (OSError, ValueError, RuntimeError) as exc:
        logger.error("%s", exc)
        return 1
    print(json.dumps(result, indent=2, default=json_default))
    return 0


def run_entrypoint() -> None:
    """Console script entry point."""
    sys.exit(main())
