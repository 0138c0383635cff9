"""
Integrity ledger routes.

Verification recomputes the hash from the stored payload; a mismatch is
answered with 409 INTEGRITY_MISMATCH, never with a 200 and a flag.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.database import get_db
from pollvault.exceptions import InvalidConfigurationError
from pollvault.orm.integrity import CommitmentType
from pollvault.services import integrity_service, poll_service, submission_service
from pollvault.services.lifecycle_service import LifecycleService

router = APIRouter(tags=["integrity"])


class CommitRequest(BaseModel):
    commitment_type: CommitmentType
    payload: Optional[Dict[str, Any]] = Field(
        None,
        description="Omit for rules/results/submissions to commit the server-computed payload",
    )
    tx_ref: Optional[str] = None
    block_ref: Optional[int] = None


class ExternalReferenceRequest(BaseModel):
    tx_ref: str = Field(..., min_length=1)
    block_ref: Optional[int] = None


async def _commit(db: AsyncSession, hackathon_id: int, request: CommitRequest):
    if request.payload is not None:
        return await integrity_service.commit(
            db, hackathon_id, request.commitment_type, request.payload,
            tx_ref=request.tx_ref, block_ref=request.block_ref,
        )

    hackathon = await poll_service.get_hackathon(db, hackathon_id)
    if request.commitment_type == CommitmentType.RULES:
        commitment = await poll_service.commit_rules(db, hackathon_id)
    elif request.commitment_type == CommitmentType.RESULTS:
        commitment = await LifecycleService.commit_results(db, hackathon)
    elif request.commitment_type == CommitmentType.SUBMISSIONS:
        submissions = await submission_service.list_submissions(db, hackathon_id)
        commitment = await integrity_service.commit(
            db, hackathon_id, CommitmentType.SUBMISSIONS,
            submission_service.submissions_payload(hackathon_id, submissions),
        )
    else:
        raise InvalidConfigurationError(f"{request.commitment_type.value} commitments need a payload")

    if request.tx_ref is not None:
        commitment = await integrity_service.attach_external_reference(
            db, commitment.id, request.tx_ref, request.block_ref
        )
    return commitment


@router.post("/hackathons/{hackathon_id}/integrity", status_code=status.HTTP_201_CREATED)
async def commit(hackathon_id: int, request: CommitRequest, db: AsyncSession = Depends(get_db)):
    await poll_service.get_hackathon(db, hackathon_id)
    commitment = await _commit(db, hackathon_id, request)
    await db.commit()
    return commitment.to_dict()


@router.get("/hackathons/{hackathon_id}/integrity")
async def verify_all(hackathon_id: int, db: AsyncSession = Depends(get_db)):
    """Every commitment of the event with its verification result."""
    await poll_service.get_hackathon(db, hackathon_id)
    commitments = await integrity_service.list_commitments(db, hackathon_id)
    report = await integrity_service.verify_all(db, hackathon_id)
    data = report.to_dict()
    data["commitments"] = [c.to_dict() for c in commitments]
    return data


@router.get("/integrity/{commitment_id}/verify")
async def verify(commitment_id: int, db: AsyncSession = Depends(get_db)):
    result = await integrity_service.require_valid(db, commitment_id)
    return result.to_dict()


@router.post("/integrity/{commitment_id}/external-reference")
async def attach_external_reference(
    commitment_id: int,
    request: ExternalReferenceRequest,
    db: AsyncSession = Depends(get_db),
):
    commitment = await integrity_service.attach_external_reference(
        db, commitment_id, request.tx_ref, request.block_ref
    )
    await db.commit()
    return commitment.to_dict()
