"""
Participation tracker.

Reporting-only record of which identities took part in which event and in
what role. Nothing on the tally path reads it.
"""
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.core.clock import utcnow
from pollvault.orm.participation import Participation, ParticipationRole

logger = logging.getLogger(__name__)


async def track_participation(
    db: AsyncSession,
    user_identifier: str,
    hackathon_id: int,
    role: ParticipationRole,
    now=None,
) -> Optional[Participation]:
    """Upsert on (user, event, role). Returns None for an empty identifier."""
    if not user_identifier:
        return None
    role = ParticipationRole(role)
    user_identifier = user_identifier.strip().lower()
    now = now or utcnow()

    result = await db.execute(
        select(Participation).where(
            Participation.user_identifier == user_identifier,
            Participation.hackathon_id == hackathon_id,
            Participation.participation_role == role.value,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = Participation(
            user_identifier=user_identifier,
            hackathon_id=hackathon_id,
            participation_role=role.value,
            participated_at=now,
        )
        db.add(record)
        logger.debug(f"Tracked {role.value} {user_identifier} in hackathon {hackathon_id}")
    else:
        record.participated_at = now

    await db.flush()
    return record


async def list_participation(db: AsyncSession, user_identifier: str) -> List[Participation]:
    result = await db.execute(
        select(Participation)
        .where(Participation.user_identifier == user_identifier.strip().lower())
        .order_by(Participation.participated_at.desc(), Participation.id.desc())
    )
    return list(result.scalars().all())
