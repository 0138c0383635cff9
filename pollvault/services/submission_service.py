"""
Team submissions for an event.

Submissions are hashed on receipt and become read-only once the event
enters CLOSED (see LifecycleService).
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.exceptions import NotFoundError, SubmissionsLockedError
from pollvault.orm.hackathon import Hackathon
from pollvault.orm.submission import HackathonSubmission
from pollvault.orm.team import Team
from pollvault.services.integrity_service import canonicalize, compute_commitment_hash
from pollvault.state_machines.hackathon_lifecycle import BALLOTS_CLOSED_STATUSES

logger = logging.getLogger(__name__)


async def create_submission(
    db: AsyncSession,
    hackathon_id: int,
    submission_data: Dict[str, Any],
    team_id: Optional[int] = None,
    submitted_by: Optional[str] = None,
) -> HackathonSubmission:
    hackathon = await db.get(Hackathon, hackathon_id)
    if hackathon is None:
        raise NotFoundError(f"Hackathon {hackathon_id} not found")

    closed = [s.value for s in BALLOTS_CLOSED_STATUSES]
    if hackathon.submissions_locked_at is not None or hackathon.status in closed:
        raise SubmissionsLockedError(
            f"Hackathon {hackathon_id} no longer accepts submissions",
            {"hackathon_id": hackathon_id, "status": hackathon.status},
        )

    if team_id is not None:
        team = await db.get(Team, team_id)
        if team is None or team.hackathon_id != hackathon_id:
            raise NotFoundError(f"Team {team_id} not found in hackathon {hackathon_id}")

    data = canonicalize(submission_data)
    submission = HackathonSubmission(
        hackathon_id=hackathon_id,
        team_id=team_id,
        submission_data=data,
        submission_hash=compute_commitment_hash(data),
        submitted_by=submitted_by,
        is_locked=False,
    )
    db.add(submission)
    await db.flush()
    return submission


async def list_submissions(db: AsyncSession, hackathon_id: int) -> List[HackathonSubmission]:
    result = await db.execute(
        select(HackathonSubmission)
        .where(HackathonSubmission.hackathon_id == hackathon_id)
        .order_by(HackathonSubmission.id)
    )
    return list(result.scalars().all())


async def lock_submissions(db: AsyncSession, hackathon_id: int) -> int:
    """Mark every unlocked submission of the event as locked. Returns rows changed."""
    result = await db.execute(
        update(HackathonSubmission)
        .where(
            HackathonSubmission.hackathon_id == hackathon_id,
            HackathonSubmission.is_locked == False,  # noqa: E712
        )
        .values(is_locked=True)
        .execution_options(synchronize_session=False)
    )
    logger.info(f"Locked {result.rowcount} submissions for hackathon {hackathon_id}")
    return result.rowcount


def submissions_payload(hackathon_id: int, submissions: List[HackathonSubmission]) -> Dict[str, Any]:
    """Commitment payload: one hash per submission, in id order."""
    return {
        "hackathon_id": hackathon_id,
        "submissions": [
            {"id": s.id, "team_id": s.team_id, "submission_hash": s.submission_hash}
            for s in submissions
        ],
    }
