"""
Poll Lifecycle State Machine (applier).

Decisions come from pollvault.state_machines.hackathon_lifecycle; this
service applies them. Every status write is a conditional UPDATE keyed
on the status that was read, so a stale writer changes nothing.

Side effects on entering a status:
    CLOSED/FINALIZED: lock submissions (exactly once, via submissions_locked_at)
    FINALIZED: commit the results of every poll (FEATURE_RESULTS_COMMITMENT)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.config.feature_flags import feature_flags
from pollvault.core.clock import utcnow
from pollvault.exceptions import NotFoundError, StatusTransitionDeniedError
from pollvault.orm.hackathon import Hackathon, HackathonStatus
from pollvault.orm.integrity import CommitmentType, IntegrityCommitment
from pollvault.services import integrity_service, notification_service, submission_service
from pollvault.services.tally_service import compute_event_results
from pollvault.state_machines.hackathon_lifecycle import (
    BALLOTS_CLOSED_STATUSES, GUARD_STATUS_CHANGED, RECONCILABLE_STATUSES,
    auto_target_status, can_change_status, is_forward,
)

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    hackathon: Hackathon
    previous_status: str
    changed: bool
    message: str
    submissions_locked: bool = False
    results_commitment: Optional[IntegrityCommitment] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hackathon_id": self.hackathon.id,
            "previous_status": self.previous_status,
            "status": self.hackathon.status,
            "changed": self.changed,
            "message": self.message,
            "submissions_locked": self.submissions_locked,
            "results_commitment_hash": (
                self.results_commitment.commitment_hash if self.results_commitment else None
            ),
        }


class LifecycleService:
    """Static methods over an AsyncSession; callers own the transaction."""

    @staticmethod
    async def get_hackathon(db: AsyncSession, hackathon_id: int) -> Hackathon:
        hackathon = await db.get(Hackathon, hackathon_id)
        if hackathon is None:
            raise NotFoundError(f"Hackathon {hackathon_id} not found")
        return hackathon

    @staticmethod
    async def _write_status(
        db: AsyncSession,
        hackathon: Hackathon,
        expected: HackathonStatus,
        target: HackathonStatus,
        now: datetime,
    ) -> bool:
        result = await db.execute(
            update(Hackathon)
            .where(Hackathon.id == hackathon.id, Hackathon.status == expected.value)
            .values(status=target.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(hackathon)
        return result.rowcount == 1

    @staticmethod
    async def lock_submissions_once(db: AsyncSession, hackathon: Hackathon, now: datetime) -> bool:
        """
        Lock the event's submissions unless that already happened.
        Returns True only for the call that performed the lock.
        """
        result = await db.execute(
            update(Hackathon)
            .where(Hackathon.id == hackathon.id, Hackathon.submissions_locked_at.is_(None))
            .values(submissions_locked_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        await db.refresh(hackathon)
        locked = await submission_service.lock_submissions(db, hackathon.id)
        submissions = await submission_service.list_submissions(db, hackathon.id)
        await integrity_service.commit(
            db,
            hackathon.id,
            CommitmentType.SUBMISSIONS,
            submission_service.submissions_payload(hackathon.id, submissions),
        )
        notification_service.dispatcher.notify(
            notification_service.SUBMISSIONS_LOCKED,
            {"hackathon_id": hackathon.id, "locked": locked},
        )
        return True

    @staticmethod
    async def commit_results(db: AsyncSession, hackathon: Hackathon) -> IntegrityCommitment:
        payload = await compute_event_results(db, hackathon.id)
        commitment = await integrity_service.commit(db, hackathon.id, CommitmentType.RESULTS, payload)
        notification_service.dispatcher.notify(
            notification_service.RESULTS_COMMITTED,
            {"hackathon_id": hackathon.id, "commitment_hash": commitment.commitment_hash},
        )
        return commitment

    @staticmethod
    async def _after_enter(
        db: AsyncSession,
        hackathon: Hackathon,
        previous: HackathonStatus,
        now: datetime,
    ) -> TransitionResult:
        status = HackathonStatus(hackathon.status)
        result = TransitionResult(
            hackathon=hackathon,
            previous_status=previous.value,
            changed=True,
            message=f"Transitioned from {previous.value} to {status.value}",
        )

        if status in BALLOTS_CLOSED_STATUSES:
            result.submissions_locked = await LifecycleService.lock_submissions_once(db, hackathon, now)

        if status == HackathonStatus.FINALIZED and feature_flags.FEATURE_RESULTS_COMMITMENT:
            result.results_commitment = await LifecycleService.commit_results(db, hackathon)

        notification_service.dispatcher.notify(
            notification_service.STATUS_CHANGED,
            {"hackathon_id": hackathon.id, "from": previous.value, "to": status.value},
        )
        logger.info(f"Hackathon {hackathon.id}: {previous.value} -> {status.value}")
        return result

    @staticmethod
    async def transition_status(
        db: AsyncSession,
        hackathon_id: int,
        requested: HackathonStatus,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Manual status change.

        Raises:
            NotFoundError: unknown event
            StatusTransitionDeniedError: a guard rejected the change, or the
                status moved underneath us
        """
        now = now or utcnow()
        requested = HackathonStatus(requested)
        hackathon = await LifecycleService.get_hackathon(db, hackathon_id)
        current = HackathonStatus(hackathon.status)

        decision = can_change_status(
            current, requested, now,
            voting_closes_at=hackathon.voting_closes_at,
            end_date=hackathon.end_date,
        )
        if not decision.allowed:
            logger.info(f"Hackathon {hackathon_id}: {current.value} -> {requested.value} denied ({decision.guard})")
            raise StatusTransitionDeniedError(
                decision.reason,
                decision.guard,
                {"current_status": current.value, "requested_status": requested.value},
            )

        if current == requested:
            return TransitionResult(hackathon, current.value, False, "Already in target status")

        if not await LifecycleService._write_status(db, hackathon, current, requested, now):
            raise StatusTransitionDeniedError(
                "Status changed concurrently; reload and retry",
                GUARD_STATUS_CHANGED,
                {"expected_status": current.value, "current_status": hackathon.status},
            )

        return await LifecycleService._after_enter(db, hackathon, current, now)

    @staticmethod
    async def reconcile_statuses(
        db: AsyncSession,
        hackathon_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[TransitionResult]:
        """
        Move LIVE/CLOSED events forward by their dates.

        Forced moves skip the manual guards. Running the sweep twice is a
        no-op the second time: each move is conditional on the status read.
        """
        now = now or utcnow()
        query = select(Hackathon).where(
            Hackathon.status.in_([s.value for s in RECONCILABLE_STATUSES])
        ).order_by(Hackathon.id)
        if hackathon_id is not None:
            query = query.where(Hackathon.id == hackathon_id)

        hackathons = (await db.execute(query)).scalars().all()
        updated = []
        for hackathon in hackathons:
            current = HackathonStatus(hackathon.status)
            target = auto_target_status(current, now, hackathon.voting_closes_at, hackathon.end_date)
            if target is None or not is_forward(current, target):
                continue

            try:
                if not await LifecycleService._write_status(db, hackathon, current, target, now):
                    logger.info(f"Hackathon {hackathon.id} already moved past {current.value}; skipping")
                    continue
                updated.append(await LifecycleService._after_enter(db, hackathon, current, now))
            except Exception:
                logger.error(f"Failed to reconcile hackathon {hackathon.id} ({current.value} -> {target.value})")
                raise

        if updated:
            logger.info(f"Reconciled {len(updated)} hackathon(s)")
        return updated

    @staticmethod
    async def mark_voter_phase_complete(
        db: AsyncSession,
        hackathon_id: int,
        now: Optional[datetime] = None,
    ) -> Hackathon:
        """Open voters_first polls to judges. Idempotent: the first timestamp wins."""
        now = now or utcnow()
        hackathon = await LifecycleService.get_hackathon(db, hackathon_id)
        await db.execute(
            update(Hackathon)
            .where(Hackathon.id == hackathon_id, Hackathon.voter_phase_completed_at.is_(None))
            .values(voter_phase_completed_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(hackathon)
        return hackathon
