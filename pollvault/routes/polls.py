"""
Poll routes: configuration, entrants, electorate, results and ties.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.database import get_db
from pollvault.orm.ballot import VoteType
from pollvault.orm.electorate import DeliveryStatus
from pollvault.orm.poll import VotingMode, VotingPermissions, VotingSequence
from pollvault.services import electorate_service, poll_service, tally_service
from pollvault.services.tie_breaker_service import create_tie_breaker, detect_ties

router = APIRouter(tags=["polls"])


# =============================================================================
# Pydantic Request Models
# =============================================================================

class TeamCreate(BaseModel):
    team_name: str = Field(..., min_length=1, max_length=255)
    project_name: Optional[str] = None
    project_description: Optional[str] = None
    pitch: Optional[str] = None
    live_site_url: Optional[str] = None
    github_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    owner_identity: Optional[str] = None


class PollCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    voting_mode: VotingMode = VotingMode.SINGLE
    voting_permissions: VotingPermissions = VotingPermissions.VOTERS_ONLY
    voter_weight: float = 1.0
    judge_weight: float = 1.0
    allow_self_vote: bool = False
    require_team_name_gate: bool = False
    allow_vote_editing: bool = False
    voting_sequence: VotingSequence = VotingSequence.SIMULTANEOUS
    max_ranked_positions: Optional[int] = None
    rank_points: Optional[Any] = Field(
        None,
        description="Points by rank: a list ([3, 2, 1]), a {rank: points} mapping, or a curve config",
    )
    min_voter_participation: Optional[float] = None
    min_judge_participation: Optional[float] = None
    is_public_results: bool = False
    teams: List[TeamCreate] = Field(default_factory=list)
    created_by: Optional[str] = None


class DuplicateTeamRequest(BaseModel):
    source_team_id: int


class VoterEntry(BaseModel):
    email: Optional[str] = None
    assigned_team_id: Optional[int] = None


class IssueVotersRequest(BaseModel):
    voters: List[VoterEntry] = Field(..., min_length=1)


class VoterAssignment(BaseModel):
    assigned_team_id: Optional[int] = None


class DeliveryUpdate(BaseModel):
    member_type: VoteType
    member_id: int
    status: DeliveryStatus


class JudgeCreate(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None


class TieBreakerCreate(BaseModel):
    team_ids: List[int]
    name: str = Field(..., min_length=1, max_length=255)
    start_time: datetime
    end_time: datetime
    supersede: bool = False
    created_by: Optional[str] = None


def _poll_detail(poll, entries) -> Dict[str, Any]:
    data = poll.to_dict()
    data["teams"] = [e.team.to_dict() for e in entries]
    return data


# =============================================================================
# Routes
# =============================================================================

@router.post("/hackathons/{hackathon_id}/polls", status_code=status.HTTP_201_CREATED)
async def create_poll(hackathon_id: int, request: PollCreate, db: AsyncSession = Depends(get_db)):
    """Create a poll; the event's rules commitment is refreshed in the same transaction."""
    fields = request.model_dump(exclude={"teams"})
    for key in ("voting_mode", "voting_permissions", "voting_sequence"):
        fields[key] = fields[key].value
    poll = await poll_service.create_poll(
        db,
        hackathon_id,
        teams=[t.model_dump() for t in request.teams],
        **fields,
    )
    await db.commit()
    entries = await poll_service.list_entries(db, poll.id)
    return _poll_detail(poll, entries)


@router.get("/polls/{poll_id}")
async def get_poll(poll_id: int, db: AsyncSession = Depends(get_db)):
    poll = await poll_service.get_poll(db, poll_id)
    entries = await poll_service.list_entries(db, poll_id)
    data = _poll_detail(poll, entries)
    data["turnout"] = (await electorate_service.get_turnout(db, poll_id)).to_dict()
    return data


@router.post("/polls/{poll_id}/teams", status_code=status.HTTP_201_CREATED)
async def add_team(poll_id: int, request: TeamCreate, db: AsyncSession = Depends(get_db)):
    entry = await poll_service.add_team(db, poll_id, request.model_dump())
    await db.commit()
    return entry.team.to_dict()


@router.post("/polls/{poll_id}/teams/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_team(poll_id: int, request: DuplicateTeamRequest, db: AsyncSession = Depends(get_db)):
    entry = await poll_service.duplicate_team(db, poll_id, request.source_team_id)
    await db.commit()
    return entry.team.to_dict()


@router.post("/polls/{poll_id}/voters", status_code=status.HTTP_201_CREATED)
async def issue_voters(poll_id: int, request: IssueVotersRequest, db: AsyncSession = Depends(get_db)):
    """Issue voter tokens. The plain tokens appear in this response only."""
    issued = await electorate_service.issue_voter_tokens(
        db, poll_id, [v.model_dump() for v in request.voters]
    )
    await db.commit()
    return {"poll_id": poll_id, "voters": [i.to_dict() for i in issued]}


@router.get("/polls/{poll_id}/voters")
async def list_voters(poll_id: int, db: AsyncSession = Depends(get_db)):
    await poll_service.get_poll(db, poll_id)
    tokens = await electorate_service.list_voter_tokens(db, poll_id)
    return {"poll_id": poll_id, "voters": [t.to_dict() for t in tokens]}


@router.post("/voters/{voter_token_id}/assignment")
async def reassign_voter(voter_token_id: int, request: VoterAssignment, db: AsyncSession = Depends(get_db)):
    record = await electorate_service.reassign_voter_token(db, voter_token_id, request.assigned_team_id)
    await db.commit()
    return record.to_dict()


@router.post("/electorate/delivery-status")
async def update_delivery_status(request: DeliveryUpdate, db: AsyncSession = Depends(get_db)):
    """Outcome of an invitation sent by the external mailer."""
    record = await electorate_service.set_delivery_status(
        db, request.member_type.value, request.member_id, request.status
    )
    await db.commit()
    return record.to_dict()


@router.get("/polls/{poll_id}/judges")
async def list_judges(poll_id: int, db: AsyncSession = Depends(get_db)):
    await poll_service.get_poll(db, poll_id)
    judges = await electorate_service.list_judges(db, poll_id)
    return {"poll_id": poll_id, "judges": [j.to_dict() for j in judges]}


@router.post("/polls/{poll_id}/judges")
async def add_judge(poll_id: int, request: JudgeCreate, db: AsyncSession = Depends(get_db)):
    judge, created = await electorate_service.add_judge(db, poll_id, request.email, request.name)
    await db.commit()
    data = judge.to_dict()
    data["created"] = created
    return data


@router.delete("/polls/{poll_id}/judges/{email}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_judge(poll_id: int, email: str, db: AsyncSession = Depends(get_db)):
    await electorate_service.remove_judge(db, poll_id, email)
    await db.commit()


@router.get("/polls/{poll_id}/results")
async def get_results(poll_id: int, db: AsyncSession = Depends(get_db)):
    """Live tally, recomputed from every ballot on each call. 403 unless the poll publishes results."""
    tally = await tally_service.compute_public_tally(db, poll_id)
    return tally.to_dict()


@router.get("/organizer/polls/{poll_id}/results")
async def get_organizer_results(poll_id: int, db: AsyncSession = Depends(get_db)):
    tally = await tally_service.compute_tally(db, poll_id)
    return tally.to_dict()


@router.get("/polls/{poll_id}/ties")
async def get_ties(
    poll_id: int,
    cutoff: int = Query(1, ge=1, description="Number of winning positions"),
    db: AsyncSession = Depends(get_db),
):
    tally = await tally_service.compute_tally(db, poll_id)
    return {
        "poll_id": poll_id,
        "cutoff": cutoff,
        "ties": [group.to_dict() for group in detect_ties(tally, cutoff)],
    }


@router.post("/polls/{poll_id}/tie-breaker", status_code=status.HTTP_201_CREATED)
async def spawn_tie_breaker(poll_id: int, request: TieBreakerCreate, db: AsyncSession = Depends(get_db)):
    tie_breaker = await create_tie_breaker(db, poll_id, **request.model_dump())
    await db.commit()
    entries = await poll_service.list_entries(db, tie_breaker.id)
    return _poll_detail(tie_breaker, entries)
