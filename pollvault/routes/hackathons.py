"""
Event routes: creation, lifecycle and team submissions.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.database import get_db
from pollvault.orm.hackathon import HackathonStatus
from pollvault.services import poll_service, submission_service
from pollvault.services.lifecycle_service import LifecycleService

router = APIRouter(prefix="/hackathons", tags=["hackathons"])


# =============================================================================
# Pydantic Request/Response Models
# =============================================================================

class HackathonCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    voting_closes_at: Optional[datetime] = None
    submission_deadline: Optional[datetime] = None
    created_by: Optional[str] = None
    status: HackathonStatus = HackathonStatus.DRAFT


class HackathonResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    status: str
    start_date: Optional[str]
    end_date: Optional[str]
    voting_closes_at: Optional[str]
    submission_deadline: Optional[str]
    voter_phase_completed_at: Optional[str]
    submissions_locked_at: Optional[str]
    created_by: Optional[str]
    created_at: Optional[str]


class StatusChangeRequest(BaseModel):
    status: HackathonStatus


class TransitionResponse(BaseModel):
    hackathon_id: int
    previous_status: str
    status: str
    changed: bool
    message: str
    submissions_locked: bool
    results_commitment_hash: Optional[str]


class ReconcileRequest(BaseModel):
    hackathon_id: Optional[int] = None


class ReconcileResponse(BaseModel):
    updated: List[TransitionResponse]


class SubmissionCreate(BaseModel):
    submission_data: Dict[str, Any]
    team_id: Optional[int] = None
    submitted_by: Optional[str] = None


# =============================================================================
# Routes
# =============================================================================

@router.post("", response_model=HackathonResponse, status_code=status.HTTP_201_CREATED)
async def create_hackathon(request: HackathonCreate, db: AsyncSession = Depends(get_db)):
    hackathon = await poll_service.create_hackathon(db, **request.model_dump())
    await db.commit()
    return HackathonResponse(**hackathon.to_dict())


@router.post("/reconcile-status", response_model=ReconcileResponse)
async def reconcile_status(request: ReconcileRequest, db: AsyncSession = Depends(get_db)):
    """Move events forward by their dates. Safe to call repeatedly."""
    results = await LifecycleService.reconcile_statuses(db, hackathon_id=request.hackathon_id)
    await db.commit()
    return ReconcileResponse(updated=[TransitionResponse(**r.to_dict()) for r in results])


@router.get("/{hackathon_id}")
async def get_hackathon(hackathon_id: int, db: AsyncSession = Depends(get_db)):
    hackathon = await poll_service.get_hackathon(db, hackathon_id)
    polls = await poll_service.list_polls(db, hackathon_id)
    data = hackathon.to_dict()
    data["polls"] = [p.to_dict() for p in polls]
    return data


@router.post("/{hackathon_id}/status", response_model=TransitionResponse)
async def change_status(
    hackathon_id: int,
    request: StatusChangeRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Manual status change. Rejections come back as 409
    STATUS_TRANSITION_DENIED with the guard name in details.
    """
    result = await LifecycleService.transition_status(db, hackathon_id, request.status)
    await db.commit()
    return TransitionResponse(**result.to_dict())


@router.post("/{hackathon_id}/voter-phase-complete", response_model=HackathonResponse)
async def voter_phase_complete(hackathon_id: int, db: AsyncSession = Depends(get_db)):
    hackathon = await LifecycleService.mark_voter_phase_complete(db, hackathon_id)
    await db.commit()
    return HackathonResponse(**hackathon.to_dict())


@router.post("/{hackathon_id}/submissions", status_code=status.HTTP_201_CREATED)
async def create_submission(
    hackathon_id: int,
    request: SubmissionCreate,
    db: AsyncSession = Depends(get_db),
):
    submission = await submission_service.create_submission(
        db,
        hackathon_id,
        request.submission_data,
        team_id=request.team_id,
        submitted_by=request.submitted_by,
    )
    await db.commit()
    return submission.to_dict()
