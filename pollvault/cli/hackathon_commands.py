"""
Lifecycle and results CLI commands.
"""
import json

from pollvault.cli.base import Command
from pollvault.orm.hackathon import HackathonStatus
from pollvault.services.lifecycle_service import LifecycleService
from pollvault.services.tally_service import compute_tally, decimal_str
from pollvault.services.tie_breaker_service import detect_ties
from pollvault.tasks.status_reconciler import reconcile_with_url


class HackathonCommand(Command):
    """Hackathon lifecycle command handler."""

    def execute(self, args) -> int:
        if args.hackathon_action == "reconcile":
            return self.run(self._reconcile(args.id))
        elif args.hackathon_action == "transition":
            return self.run(self._transition(args.id, HackathonStatus(args.status)))
        elif args.hackathon_action == "voter-phase-complete":
            return self.run(self._voter_phase_complete(args.id))
        else:
            print("Error: Unknown hackathon action")
            return 1

    async def _reconcile(self, hackathon_id=None) -> int:
        updated = await reconcile_with_url(self.database_url, hackathon_id)

        if not updated:
            print("Nothing to reconcile")
            return 0
        for item in updated:
            locked = " (submissions locked)" if item["submissions_locked"] else ""
            print(f"Hackathon {item['hackathon_id']}: {item['previous_status']} -> {item['status']}{locked}")
        return 0

    async def _transition(self, hackathon_id: int, status: HackathonStatus) -> int:
        async with self.session() as db:
            result = await LifecycleService.transition_status(db, hackathon_id, status)
            await db.commit()
        print(result.message)
        if result.results_commitment is not None:
            print(f"Results commitment: {result.results_commitment.commitment_hash}")
        return 0

    async def _voter_phase_complete(self, hackathon_id: int) -> int:
        async with self.session() as db:
            hackathon = await LifecycleService.mark_voter_phase_complete(db, hackathon_id)
            await db.commit()
        print(f"Voter phase complete at {hackathon.voter_phase_completed_at.isoformat()}")
        return 0


class PollCommand(Command):
    """Poll results command handler."""

    def execute(self, args) -> int:
        if args.poll_action == "tally":
            return self.run(self._tally(args.id, args.json))
        elif args.poll_action == "ties":
            return self.run(self._ties(args.id, args.cutoff))
        else:
            print("Error: Unknown poll action")
            return 1

    async def _tally(self, poll_id: int, as_json: bool = False) -> int:
        async with self.session() as db:
            tally = await compute_tally(db, poll_id)

        if as_json:
            print(json.dumps(tally.to_dict(), indent=2))
            return 0

        print(f"=== Poll {poll_id} ({tally.voting_mode}, {tally.ballot_count} ballots) ===")
        print(f"\n{'#':<4} {'Team':<30} {'Total':>10} {'Voters':>10} {'Judges':>10} {'Votes':>6}")
        print("-" * 74)
        for position, row in enumerate(tally.rows, start=1):
            print(
                f"{position:<4} {row.team_name[:28]:<30} {decimal_str(row.total_score):>10} "
                f"{decimal_str(row.voter_score):>10} {decimal_str(row.judge_score):>10} {row.vote_count:>6}"
            )
        for warning in tally.warnings:
            print(f"\nWARNING {warning.code}: {warning.role} turnout "
                  f"{warning.turnout_percent}% < {decimal_str(warning.threshold_percent)}%")
        return 0

    async def _ties(self, poll_id: int, cutoff: int) -> int:
        async with self.session() as db:
            tally = await compute_tally(db, poll_id)

        groups = detect_ties(tally, cutoff)
        if not groups:
            print(f"No ties within the top {cutoff}")
            return 0
        for group in groups:
            marker = " (straddles cutoff)" if group.straddles_cutoff else ""
            print(f"Score {decimal_str(group.total_score)}: teams {group.team_ids} "
                  f"at positions {group.positions}{marker}")
        return 0
