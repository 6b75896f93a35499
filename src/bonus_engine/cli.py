"""Bonus engine command line interface.

Provides operational tools for:
- Schema creation
- Scheduled target evaluation
- Running the API server

Usage:
    bonus-engine evaluate-targets --business-id X
    bonus-engine evaluate-targets --business-id X --at 2024-01-31T23:00:00 --json
    bonus-engine init-db
    bonus-engine serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Callable
from uuid import UUID

from bonus_engine.config import get_settings
from bonus_engine.database import dispose_db, get_session, init_models
from bonus_engine.services.record_service import BonusRecordService
from bonus_engine.services.results import ActionResult

logger = logging.getLogger(__name__)


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string (calendar-local, no offset)."""
    return datetime.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


async def evaluate_targets(business_id: UUID, now: datetime | None = None) -> ActionResult:
    """Run one target evaluation for a business using the configured database."""
    settings = get_settings()
    try:
        async with get_session() as session:
            return await BonusRecordService(session).calculate_target_bonuses(
                business_id,
                timezone=settings.bonus_timezone,
                apply_tiers=settings.target_apply_tiers,
                now=now,
            )
    finally:
        await dispose_db()


async def create_schema() -> None:
    """Create missing tables in the configured database."""
    try:
        await init_models()
    finally:
        await dispose_db()


class BonusCli:
    """Bonus engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="bonus-engine",
            description="BNPL staff bonus engine tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # evaluate-targets command
        evaluate = subparsers.add_parser(
            "evaluate-targets",
            help="Evaluate target-based bonus rules for the current periods",
        )
        evaluate.add_argument(
            "--business-id",
            type=parse_uuid,
            required=True,
            help="Business ID to evaluate",
        )
        evaluate.add_argument(
            "--at",
            type=parse_datetime,
            help="Evaluate as of this local time (ISO format, default: now)",
        )
        evaluate.add_argument(
            "--json",
            action="store_true",
            help="Print the result as JSON",
        )

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create missing bonus engine tables",
        )

        # serve command
        serve = subparsers.add_parser(
            "serve",
            help="Run the HTTP API",
        )
        serve.add_argument(
            "--host",
            type=str,
            help="Bind address (default: $HOST)",
        )
        serve.add_argument(
            "--port",
            type=int,
            help="Port (default: $PORT)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        logging.basicConfig(
            level=get_settings().log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        handlers: dict[str, Callable[..., int]] = {
            "evaluate-targets": self._cmd_evaluate_targets,
            "init-db": self._cmd_init_db,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_evaluate_targets(self, args: argparse.Namespace) -> int:
        """Evaluate target bonuses."""
        result = asyncio.run(evaluate_targets(args.business_id, now=args.at))

        if not result.success:
            print(f"ERROR: {result.error}", file=sys.stderr)
            return 1

        data = result.data
        if args.json:
            print(json.dumps(data, default=str, indent=2))
            return 0

        print(f"Target evaluation for business: {args.business_id}")
        print(f"  Bonuses created:  {data['bonuses_created']}")
        print(f"  Already awarded:  {data['already_awarded']}")
        print(f"  Not qualified:    {data['not_qualified']}")
        if data["skipped_rules"]:
            print(f"  Skipped rules:    {len(data['skipped_rules'])}")
        if data["failures"]:
            print(f"  Failures:         {len(data['failures'])}")
            for failure in data["failures"]:
                print(f"    - {failure}")
            return 2
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create the schema."""
        asyncio.run(create_schema())
        print("Schema ready")
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run uvicorn."""
        import uvicorn

        settings = get_settings()
        uvicorn.run(
            "bonus_engine.api.app:app",
            host=args.host or settings.HOST,
            port=args.port or settings.PORT,
            reload=settings.DEBUG,
            log_level=settings.log_level.lower(),
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = BonusCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
