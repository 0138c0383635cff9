"""
Ballot submission and the credential pre-check.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.config.feature_flags import feature_flags
from pollvault.core.rate_limit import limiter
from pollvault.database import get_db
from pollvault.exceptions import UnknownVoterError
from pollvault.orm.ballot import VoteType
from pollvault.services.vote_service import submit_ballot, validate_credentials

router = APIRouter(prefix="/vote", tags=["votes"])


class CredentialsRequest(BaseModel):
    """Voters authenticate with their token, judges with their email."""
    poll_id: int
    role: VoteType = VoteType.VOTER
    token: Optional[str] = None
    email: Optional[str] = None

    def identity(self) -> str:
        identity = self.email if self.role == VoteType.JUDGE else self.token
        if not identity:
            raise UnknownVoterError(
                "Judges must supply email" if self.role == VoteType.JUDGE else "Voters must supply token"
            )
        return identity


class VoteSubmitRequest(CredentialsRequest):
    """
    `ballot` is checked by the service after the window, role and identity
    checks. `team_name` is only read on polls with the team-name gate.
    """
    team_name: Optional[str] = None
    ballot: Dict[str, Any]


@router.post("/validate")
@limiter.limit(feature_flags.VOTE_RATE_LIMIT)
async def validate_vote(
    request: Request,  # Required by slowapi
    credentials: CredentialsRequest,
    db: AsyncSession = Depends(get_db),
):
    check = await validate_credentials(db, credentials.poll_id, credentials.role.value, credentials.identity())
    return check.to_dict()


@router.post("/submit")
@limiter.limit(feature_flags.VOTE_RATE_LIMIT)
async def submit_vote(
    request: Request,  # Required by slowapi
    vote: VoteSubmitRequest,
    db: AsyncSession = Depends(get_db),
):
    outcome = await submit_ballot(
        db,
        vote.poll_id,
        vote.role.value,
        vote.identity(),
        vote.ballot,
        team_name=vote.team_name,
    )
    await db.commit()
    return outcome.to_dict()
