"""
Organizer actions: events, polls and entrants.

Creating a poll validates its configuration, fixes the rank curve and
re-commits the event's rules; so does every change to a poll's entrants.
"""
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.core.clock import to_naive_utc
from pollvault.exceptions import InvalidConfigurationError, NotFoundError
from pollvault.orm.hackathon import Hackathon, HackathonStatus
from pollvault.orm.integrity import CommitmentType
from pollvault.orm.participation import ParticipationRole
from pollvault.orm.poll import Poll, PollEntry, VotingMode, VotingPermissions, VotingSequence
from pollvault.orm.team import Team
from pollvault.services import integrity_service
from pollvault.services.participation_service import track_participation
from pollvault.services.tally_service import resolve_rank_points_config

logger = logging.getLogger(__name__)

TEAM_FIELDS = (
    "project_name", "project_description", "pitch",
    "live_site_url", "github_url", "owner_identity",
)


# =============================================================================
# Events
# =============================================================================

async def create_hackathon(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    voting_closes_at: Optional[datetime] = None,
    submission_deadline: Optional[datetime] = None,
    created_by: Optional[str] = None,
    status: HackathonStatus = HackathonStatus.DRAFT,
) -> Hackathon:
    if not name or not name.strip():
        raise InvalidConfigurationError("Hackathon name is required")

    start_date, end_date = to_naive_utc(start_date), to_naive_utc(end_date)
    if start_date and end_date and end_date <= start_date:
        raise InvalidConfigurationError("end_date must be after start_date")

    hackathon = Hackathon(
        name=name.strip(),
        description=description,
        status=HackathonStatus(status).value,
        start_date=start_date,
        end_date=end_date,
        voting_closes_at=to_naive_utc(voting_closes_at),
        submission_deadline=to_naive_utc(submission_deadline),
        created_by=created_by,
    )
    db.add(hackathon)
    await db.flush()

    if created_by:
        await track_participation(db, created_by, hackathon.id, ParticipationRole.ORGANIZER)

    logger.info(f"Created hackathon {hackathon.id} '{hackathon.name}'")
    return hackathon


async def get_hackathon(db: AsyncSession, hackathon_id: int) -> Hackathon:
    hackathon = await db.get(Hackathon, hackathon_id)
    if hackathon is None:
        raise NotFoundError(f"Hackathon {hackathon_id} not found")
    return hackathon


async def list_polls(db: AsyncSession, hackathon_id: int) -> List[Poll]:
    result = await db.execute(
        select(Poll).where(Poll.hackathon_id == hackathon_id).order_by(Poll.id)
    )
    return list(result.scalars().all())


async def commit_rules(db: AsyncSession, hackathon_id: int):
    """(Re)commit the configuration and entrant set of every poll of the event."""
    polls = await list_polls(db, hackathon_id)
    result = await db.execute(
        select(PollEntry.poll_id, PollEntry.team_id)
        .join(Poll, Poll.id == PollEntry.poll_id)
        .where(Poll.hackathon_id == hackathon_id)
        .order_by(PollEntry.id)
    )
    entrants = defaultdict(list)
    for poll_id, team_id in result.all():
        entrants[poll_id].append(team_id)

    payload = {
        "hackathon_id": hackathon_id,
        "polls": [dict(p.rules_dict(), team_ids=entrants[p.id]) for p in polls],
    }
    return await integrity_service.commit(db, hackathon_id, CommitmentType.RULES, payload)


# =============================================================================
# Polls
# =============================================================================

def validate_poll_config(
    start_time: datetime,
    end_time: datetime,
    voting_mode: str,
    voting_permissions: str,
    voting_sequence: str,
    voter_weight: float,
    judge_weight: float,
    max_ranked_positions: Optional[int],
    min_voter_participation: Optional[float],
    min_judge_participation: Optional[float],
) -> None:
    if start_time is None or end_time is None or end_time <= start_time:
        raise InvalidConfigurationError("end_time must be after start_time")

    for label, value, enum in (
        ("voting_mode", voting_mode, VotingMode),
        ("voting_permissions", voting_permissions, VotingPermissions),
        ("voting_sequence", voting_sequence, VotingSequence),
    ):
        try:
            enum(value)
        except ValueError:
            raise InvalidConfigurationError(f"Invalid {label}: {value}")

    if voter_weight is None or voter_weight < 0 or judge_weight is None or judge_weight < 0:
        raise InvalidConfigurationError("Role weights must be non-negative")

    if max_ranked_positions is not None:
        if voting_mode != VotingMode.RANKED.value:
            raise InvalidConfigurationError("max_ranked_positions is only valid for ranked polls")
        if max_ranked_positions < 1:
            raise InvalidConfigurationError("max_ranked_positions must be at least 1")

    for label, value in (
        ("min_voter_participation", min_voter_participation),
        ("min_judge_participation", min_judge_participation),
    ):
        if value is not None and not 0 <= value <= 100:
            raise InvalidConfigurationError(f"{label} must be a percentage between 0 and 100")


async def create_poll(
    db: AsyncSession,
    hackathon_id: int,
    name: str,
    start_time: datetime,
    end_time: datetime,
    voting_mode: str = VotingMode.SINGLE.value,
    voting_permissions: str = VotingPermissions.VOTERS_ONLY.value,
    voter_weight: float = 1.0,
    judge_weight: float = 1.0,
    allow_self_vote: bool = False,
    require_team_name_gate: bool = False,
    allow_vote_editing: bool = False,
    voting_sequence: str = VotingSequence.SIMULTANEOUS.value,
    max_ranked_positions: Optional[int] = None,
    rank_points: Any = None,
    min_voter_participation: Optional[float] = None,
    min_judge_participation: Optional[float] = None,
    is_public_results: bool = False,
    teams: Optional[Sequence[Dict[str, Any]]] = None,
    created_by: Optional[str] = None,
) -> Poll:
    """
    Create a poll (and optionally its entrants) and re-commit the rules.

    Raises:
        NotFoundError: event does not exist
        InvalidConfigurationError: inconsistent configuration
    """
    hackathon = await get_hackathon(db, hackathon_id)
    if hackathon.status == HackathonStatus.FINALIZED.value:
        raise InvalidConfigurationError(f"Hackathon {hackathon_id} is finalized")

    start_time, end_time = to_naive_utc(start_time), to_naive_utc(end_time)
    validate_poll_config(
        start_time, end_time, voting_mode, voting_permissions, voting_sequence,
        voter_weight, judge_weight, max_ranked_positions,
        min_voter_participation, min_judge_participation,
    )
    voting_mode = VotingMode(voting_mode).value

    poll = Poll(
        hackathon_id=hackathon_id,
        name=name,
        start_time=start_time,
        end_time=end_time,
        voting_mode=voting_mode,
        voting_permissions=VotingPermissions(voting_permissions).value,
        voter_weight=voter_weight,
        judge_weight=judge_weight,
        allow_self_vote=allow_self_vote,
        require_team_name_gate=require_team_name_gate,
        allow_vote_editing=allow_vote_editing,
        voting_sequence=VotingSequence(voting_sequence).value,
        max_ranked_positions=max_ranked_positions,
        rank_points_config=resolve_rank_points_config(voting_mode, max_ranked_positions, rank_points),
        min_voter_participation=min_voter_participation,
        min_judge_participation=min_judge_participation,
        is_public_results=is_public_results,
        is_tie_breaker=False,
        is_superseded=False,
        created_by=created_by,
    )
    db.add(poll)
    await db.flush()

    for team in teams or []:
        await _attach_new_team(db, poll, team)

    await commit_rules(db, hackathon_id)
    logger.info(f"Created poll {poll.id} '{poll.name}' ({poll.voting_mode}) in hackathon {hackathon_id}")
    return poll


async def get_poll(db: AsyncSession, poll_id: int) -> Poll:
    poll = await db.get(Poll, poll_id)
    if poll is None:
        raise NotFoundError(f"Poll {poll_id} not found")
    return poll


# =============================================================================
# Entrants
# =============================================================================

async def list_entries(db: AsyncSession, poll_id: int) -> List[PollEntry]:
    result = await db.execute(
        select(PollEntry).where(PollEntry.poll_id == poll_id).order_by(PollEntry.id)
    )
    return list(result.unique().scalars().all())


async def _attach_new_team(db: AsyncSession, poll: Poll, data: Dict[str, Any]) -> PollEntry:
    team_name = (data.get("team_name") or "").strip()
    if not team_name:
        raise InvalidConfigurationError("team_name is required")

    team = Team(
        hackathon_id=poll.hackathon_id,
        team_name=team_name,
        team_metadata=data.get("metadata"),
        **{k: data.get(k) for k in TEAM_FIELDS},
    )
    db.add(team)
    await db.flush()

    entry = PollEntry(poll_id=poll.id, team=team)
    db.add(entry)
    await db.flush()
    return entry


def _ensure_entrants_editable(poll: Poll) -> None:
    # A tie-breaker's entrants are fixed to a subset of its parent's
    if poll.is_tie_breaker:
        raise InvalidConfigurationError(
            f"Poll {poll.id} is a tie-breaker; its entrants cannot be changed",
            {"poll_id": poll.id},
        )


async def _ensure_event_editable(db: AsyncSession, poll: Poll) -> None:
    hackathon = await get_hackathon(db, poll.hackathon_id)
    if hackathon.status == HackathonStatus.FINALIZED.value:
        raise InvalidConfigurationError(f"Hackathon {hackathon.id} is finalized")


async def add_team(db: AsyncSession, poll_id: int, team: Dict[str, Any]) -> PollEntry:
    poll = await get_poll(db, poll_id)
    _ensure_entrants_editable(poll)
    await _ensure_event_editable(db, poll)
    entry = await _attach_new_team(db, poll, team)
    await commit_rules(db, poll.hackathon_id)
    logger.info(f"Added team {entry.team_id} to poll {poll_id}")
    return entry


async def duplicate_team(db: AsyncSession, poll_id: int, source_team_id: int) -> PollEntry:
    """
    Copy a team from another poll of the same event into this poll.
    The copy is a new team with its own identity.
    """
    poll = await get_poll(db, poll_id)
    _ensure_entrants_editable(poll)
    await _ensure_event_editable(db, poll)

    source = await db.get(Team, source_team_id)
    if source is None:
        raise NotFoundError(f"Team {source_team_id} not found")
    if source.hackathon_id != poll.hackathon_id:
        raise InvalidConfigurationError(
            f"Team {source_team_id} belongs to another hackathon",
            {"team_id": source_team_id, "hackathon_id": poll.hackathon_id},
        )

    data = source.project_fields()
    data["team_name"] = source.team_name
    entry = await _attach_new_team(db, poll, data)
    await commit_rules(db, poll.hackathon_id)
    logger.info(f"Duplicated team {source_team_id} as {entry.team_id} into poll {poll_id}")
    return entry
