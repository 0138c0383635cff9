"""
Integrity Ledger.

Content-addressed commitments over arbitrary JSON payloads. A commitment
is the SHA-256 of the canonical JSON of its payload: keys sorted, compact
separators, Decimals/datetimes/UUIDs rendered as strings. The payload is
stored in that canonical form, so anyone holding the stored row can
recompute the hash.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.exceptions import (
    ExternalReferenceLockedError, IntegrityMismatchError, NotFoundError
)
from pollvault.orm.integrity import CommitmentType, IntegrityCommitment

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    commitment_id: int
    commitment_type: str
    is_valid: bool
    stored_hash: str
    recomputed_hash: str

    @property
    def message(self) -> str:
        if self.is_valid:
            return "Commitment is valid"
        return "Commitment hash mismatch - data may have been tampered with"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commitment_id": self.commitment_id,
            "commitment_type": self.commitment_type,
            "is_valid": self.is_valid,
            "stored_hash": self.stored_hash,
            "recomputed_hash": self.recomputed_hash,
            "message": self.message,
        }


@dataclass
class EventVerification:
    hackathon_id: int
    results: List[VerificationResult] = field(default_factory=list)

    @property
    def all_valid(self) -> bool:
        return all(r.is_valid for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hackathon_id": self.hackathon_id,
            "all_valid": self.all_valid,
            "results": [r.to_dict() for r in self.results],
        }


# =============================================================================
# Canonicalization
# =============================================================================

def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(payload: Any) -> str:
    """Deterministic JSON text for hashing."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def canonicalize(payload: Any) -> Any:
    """Plain-JSON form of payload, exactly as it will be hashed and stored."""
    return json.loads(canonical_json(payload))


def compute_commitment_hash(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


# =============================================================================
# Ledger operations
# =============================================================================

async def commit(
    db: AsyncSession,
    hackathon_id: int,
    commitment_type: CommitmentType,
    payload: Dict[str, Any],
    tx_ref: Optional[str] = None,
    block_ref: Optional[int] = None,
) -> IntegrityCommitment:
    """
    Upsert the (hackathon_id, commitment_type) commitment.

    A later commit overwrites hash and payload and never creates a second
    row for the same pair. External references survive only while the
    hash is unchanged.
    """
    commitment_type = CommitmentType(commitment_type)
    stored_payload = canonicalize(payload)
    commitment_hash = compute_commitment_hash(stored_payload)

    result = await db.execute(
        select(IntegrityCommitment)
        .where(
            IntegrityCommitment.hackathon_id == hackathon_id,
            IntegrityCommitment.commitment_type == commitment_type.value,
        )
        .with_for_update()
    )
    commitment = result.scalar_one_or_none()

    if commitment is None:
        commitment = IntegrityCommitment(
            hackathon_id=hackathon_id,
            commitment_type=commitment_type.value,
        )
        db.add(commitment)

    if commitment.commitment_hash != commitment_hash:
        # New content: any anchor recorded for the old hash no longer applies
        commitment.tx_ref = None
        commitment.block_ref = None
    commitment.commitment_hash = commitment_hash
    commitment.commitment_data = stored_payload

    if tx_ref is not None:
        _set_reference(commitment, tx_ref, block_ref)

    await db.flush()
    logger.info(
        f"Committed {commitment_type.value} for hackathon {hackathon_id}: {commitment_hash[:16]}..."
    )
    return commitment


def _set_reference(commitment: IntegrityCommitment, tx_ref: str, block_ref: Optional[int]) -> None:
    if commitment.tx_ref is not None:
        if commitment.tx_ref == tx_ref and commitment.block_ref == block_ref:
            return
        raise ExternalReferenceLockedError(
            f"Commitment {commitment.id} is already anchored to {commitment.tx_ref}",
            {"commitment_id": commitment.id, "tx_ref": commitment.tx_ref, "block_ref": commitment.block_ref},
        )
    commitment.tx_ref = tx_ref
    commitment.block_ref = block_ref


async def get_commitment(db: AsyncSession, commitment_id: int) -> IntegrityCommitment:
    commitment = await db.get(IntegrityCommitment, commitment_id)
    if commitment is None:
        raise NotFoundError(f"Commitment {commitment_id} not found")
    return commitment


async def get_commitment_for(
    db: AsyncSession,
    hackathon_id: int,
    commitment_type: CommitmentType,
) -> Optional[IntegrityCommitment]:
    result = await db.execute(
        select(IntegrityCommitment).where(
            IntegrityCommitment.hackathon_id == hackathon_id,
            IntegrityCommitment.commitment_type == CommitmentType(commitment_type).value,
        )
    )
    return result.scalar_one_or_none()


async def list_commitments(db: AsyncSession, hackathon_id: int) -> List[IntegrityCommitment]:
    result = await db.execute(
        select(IntegrityCommitment)
        .where(IntegrityCommitment.hackathon_id == hackathon_id)
        .order_by(IntegrityCommitment.id)
    )
    return list(result.scalars().all())


def verify_record(commitment: IntegrityCommitment) -> VerificationResult:
    """Recompute the digest of the stored payload and compare."""
    recomputed = compute_commitment_hash(commitment.commitment_data)
    is_valid = hmac.compare_digest(recomputed, commitment.commitment_hash)
    if not is_valid:
        logger.error(
            f"INTEGRITY MISMATCH on commitment {commitment.id} "
            f"(hackathon {commitment.hackathon_id}, {commitment.commitment_type}): "
            f"stored={commitment.commitment_hash} recomputed={recomputed}"
        )
    return VerificationResult(
        commitment_id=commitment.id,
        commitment_type=commitment.commitment_type,
        is_valid=is_valid,
        stored_hash=commitment.commitment_hash,
        recomputed_hash=recomputed,
    )


async def verify(db: AsyncSession, commitment_id: int) -> VerificationResult:
    commitment = await get_commitment(db, commitment_id)
    # Re-read from storage so edits made outside this session are seen
    await db.refresh(commitment)
    return verify_record(commitment)


async def require_valid(db: AsyncSession, commitment_id: int) -> VerificationResult:
    """verify(), raising IntegrityMismatchError instead of returning invalid."""
    result = await verify(db, commitment_id)
    if not result.is_valid:
        raise IntegrityMismatchError(commitment_id, result.stored_hash, result.recomputed_hash)
    return result


async def verify_all(db: AsyncSession, hackathon_id: int) -> EventVerification:
    report = EventVerification(hackathon_id=hackathon_id)
    for commitment in await list_commitments(db, hackathon_id):
        await db.refresh(commitment)
        report.results.append(verify_record(commitment))
    return report


async def attach_external_reference(
    db: AsyncSession,
    commitment_id: int,
    tx_ref: str,
    block_ref: Optional[int] = None,
) -> IntegrityCommitment:
    """
    Record the external anchor of a commitment. Write-once: repeating the
    same reference is a no-op, a different one is rejected.
    """
    commitment = await get_commitment(db, commitment_id)
    _set_reference(commitment, tx_ref, block_ref)
    await db.flush()
    return commitment
