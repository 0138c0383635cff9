"""
Tie Resolver.

Ties are read off a tally; resolving one means spawning a tie-breaker poll
that reuses the parent's rules and links the tied teams by reference.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from itertools import groupby
from typing import Any, Dict, List, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.core.clock import to_naive_utc
from pollvault.exceptions import InvalidConfigurationError, NotFoundError, TieBreakerConflictError
from pollvault.orm.hackathon import Hackathon, HackathonStatus
from pollvault.orm.poll import Poll, PollEntry
from pollvault.services.poll_service import commit_rules, validate_poll_config
from pollvault.services.tally_service import TallyResult, decimal_str
from pollvault.state_machines.hackathon_lifecycle import BALLOTS_CLOSED_STATUSES

logger = logging.getLogger(__name__)

# Rule fields a tie-breaker inherits from its parent
INHERITED_FIELDS = (
    "voting_mode", "voting_permissions", "voter_weight", "judge_weight",
    "allow_self_vote", "require_team_name_gate", "allow_vote_editing",
    "voting_sequence", "max_ranked_positions", "rank_points_config",
    "min_voter_participation", "min_judge_participation", "is_public_results",
)


@dataclass
class TieGroup:
    total_score: Decimal
    team_ids: List[int]
    positions: List[int]
    straddles_cutoff: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": decimal_str(self.total_score),
            "team_ids": self.team_ids,
            "positions": self.positions,
            "straddles_cutoff": self.straddles_cutoff,
        }


def detect_ties(tally: TallyResult, cutoff: int) -> List[TieGroup]:
    """
    Groups of two or more entries sharing a total score, where at least
    one member sits at a 1-based position <= cutoff. A group straddles the
    cutoff when it also reaches past it.
    """
    groups = []
    positioned = list(enumerate(tally.rows, start=1))
    for score, members in groupby(positioned, key=lambda item: item[1].total_score):
        members = list(members)
        if len(members) < 2:
            continue
        positions = [pos for pos, _ in members]
        if min(positions) > cutoff:
            continue
        groups.append(TieGroup(
            total_score=score,
            team_ids=[row.team_id for _, row in members],
            positions=positions,
            straddles_cutoff=max(positions) > cutoff,
        ))
    return groups


async def _active_tie_breakers(db: AsyncSession, parent_id: int) -> List[Poll]:
    result = await db.execute(
        select(Poll)
        .where(
            Poll.tie_breaker_of == parent_id,
            Poll.is_superseded == False,  # noqa: E712
        )
        .order_by(Poll.id)
    )
    return list(result.scalars().all())


async def create_tie_breaker(
    db: AsyncSession,
    poll_id: int,
    team_ids: Sequence[int],
    name: str,
    start_time: datetime,
    end_time: datetime,
    supersede: bool = False,
    created_by: str = None,
) -> Poll:
    """
    Spawn a tie-breaker poll for `team_ids` of poll `poll_id`.

    Raises:
        InvalidConfigurationError: fewer than two teams, or a team that is
            not an entrant of the parent, or the event is closed or finalized
        TieBreakerConflictError: a team is already in an active
            tie-breaker of the same parent and supersede is False
    """
    parent = await db.get(Poll, poll_id)
    if parent is None:
        raise NotFoundError(f"Poll {poll_id} not found")

    hackathon = await db.get(Hackathon, parent.hackathon_id)
    if HackathonStatus(hackathon.status) in BALLOTS_CLOSED_STATUSES:
        raise InvalidConfigurationError(
            f"Hackathon {hackathon.id} is {hackathon.status}; no tie-breaker can collect ballots",
            {"hackathon_id": hackathon.id, "status": hackathon.status},
        )

    team_ids = list(dict.fromkeys(team_ids))
    if len(team_ids) < 2:
        raise InvalidConfigurationError("A tie-breaker needs at least two teams")

    result = await db.execute(
        select(PollEntry.team_id).where(PollEntry.poll_id == parent.id).order_by(PollEntry.id)
    )
    parent_team_ids = list(result.scalars().all())
    foreign = [t for t in team_ids if t not in parent_team_ids]
    if foreign:
        raise InvalidConfigurationError(
            f"Teams {foreign} are not entrants of poll {parent.id}",
            {"team_ids": foreign},
        )

    start_time, end_time = to_naive_utc(start_time), to_naive_utc(end_time)
    validate_poll_config(
        start_time, end_time, parent.voting_mode, parent.voting_permissions,
        parent.voting_sequence, parent.voter_weight, parent.judge_weight,
        parent.max_ranked_positions, parent.min_voter_participation,
        parent.min_judge_participation,
    )

    conflicting = []
    for existing in await _active_tie_breakers(db, parent.id):
        rows = await db.execute(select(PollEntry.team_id).where(PollEntry.poll_id == existing.id))
        overlap = set(rows.scalars().all()) & set(team_ids)
        if overlap:
            conflicting.append((existing, sorted(overlap)))

    if conflicting and not supersede:
        existing, overlap = conflicting[0]
        raise TieBreakerConflictError(
            f"Teams {overlap} are already in tie-breaker {existing.id}",
            {"tie_breaker_id": existing.id, "team_ids": overlap},
        )
    for existing, _ in conflicting:
        existing.is_superseded = True
        logger.info(f"Tie-breaker {existing.id} superseded")

    tie_breaker = Poll(
        hackathon_id=parent.hackathon_id,
        name=name,
        start_time=start_time,
        end_time=end_time,
        is_tie_breaker=True,
        tie_breaker_of=parent.id,
        is_superseded=False,
        created_by=created_by,
        **{f: getattr(parent, f) for f in INHERITED_FIELDS},
    )
    db.add(tie_breaker)
    await db.flush()

    # Entries keep the parent's insertion order
    for team_id in [t for t in parent_team_ids if t in team_ids]:
        db.add(PollEntry(poll_id=tie_breaker.id, team_id=team_id))
    await db.flush()

    await commit_rules(db, parent.hackathon_id)
    logger.info(f"Created tie-breaker {tie_breaker.id} for poll {parent.id} with teams {team_ids}")
    return tie_breaker
