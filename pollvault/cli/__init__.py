#!/usr/bin/env python3
"""
pollvault operator CLI

Usage:
    python -m pollvault.cli <command> [options]

Commands:
    hackathon   Lifecycle operations (reconcile, transition, voter-phase-complete)
    poll        Results (tally, ties)
    integrity   Ledger operations (list, verify)

Environment:
    DATABASE_URL    Database connection string
    LOG_LEVEL       DEBUG|INFO|WARNING|ERROR
"""
import argparse
import logging
import os
from typing import Optional

from pollvault import __version__
from pollvault.cli.hackathon_commands import HackathonCommand, PollCommand
from pollvault.cli.integrity_commands import IntegrityCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pollvault",
        description="pollvault operator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s hackathon reconcile
  %(prog)s hackathon transition --id 3 --status closed
  %(prog)s poll tally --id 7
  %(prog)s poll ties --id 7 --cutoff 3
  %(prog)s integrity verify --hackathon 3
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO").upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--database-url",
        default=None,
        help="Overrides DATABASE_URL"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Hackathon commands
    hackathon_parser = subparsers.add_parser("hackathon", help="Lifecycle operations")
    hackathon_subparsers = hackathon_parser.add_subparsers(dest="hackathon_action")

    reconcile_parser = hackathon_subparsers.add_parser("reconcile", help="Apply date-driven status changes")
    reconcile_parser.add_argument("--id", "-i", type=int, help="Only this hackathon")

    transition_parser = hackathon_subparsers.add_parser("transition", help="Change status manually")
    transition_parser.add_argument("--id", "-i", type=int, required=True, help="Hackathon ID")
    transition_parser.add_argument(
        "--status", "-s", required=True,
        choices=["draft", "live", "closed", "finalized"],
        help="Requested status"
    )

    phase_parser = hackathon_subparsers.add_parser("voter-phase-complete", help="Open voters_first polls to judges")
    phase_parser.add_argument("--id", "-i", type=int, required=True, help="Hackathon ID")

    # Poll commands
    poll_parser = subparsers.add_parser("poll", help="Results")
    poll_subparsers = poll_parser.add_subparsers(dest="poll_action")

    tally_parser = poll_subparsers.add_parser("tally", help="Show the live tally")
    tally_parser.add_argument("--id", "-i", type=int, required=True, help="Poll ID")
    tally_parser.add_argument("--json", action="store_true", help="Print JSON")

    ties_parser = poll_subparsers.add_parser("ties", help="Show ties around the cutoff")
    ties_parser.add_argument("--id", "-i", type=int, required=True, help="Poll ID")
    ties_parser.add_argument("--cutoff", type=int, default=1, help="Winning positions (default: 1)")

    # Integrity commands
    integrity_parser = subparsers.add_parser("integrity", help="Ledger operations")
    integrity_subparsers = integrity_parser.add_subparsers(dest="integrity_action")

    list_parser = integrity_subparsers.add_parser("list", help="List commitments of a hackathon")
    list_parser.add_argument("--hackathon", "-t", type=int, required=True, help="Hackathon ID")

    verify_parser = integrity_subparsers.add_parser("verify", help="Recompute and compare hashes")
    target = verify_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--hackathon", "-t", type=int, help="Verify every commitment of a hackathon")
    target.add_argument("--commitment", "-c", type=int, help="Verify one commitment")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    database_url = parsed.database_url or os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./pollvault.db")

    handlers = {
        "hackathon": HackathonCommand,
        "poll": PollCommand,
        "integrity": IntegrityCommand,
    }
    return handlers[parsed.command](database_url).execute(parsed)
