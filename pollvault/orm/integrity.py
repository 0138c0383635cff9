"""
Integrity commitments.

Exactly one row per (hackathon_id, commitment_type); later commits
overwrite the row. commitment_hash must always equal the SHA-256 of the
canonical JSON of commitment_data.
"""
from enum import Enum

from sqlalchemy import (
    BigInteger, CheckConstraint, Column, ForeignKey, Integer, String,
    UniqueConstraint
)

from pollvault.orm.base import BaseModel, UniversalJSON, isoformat


class CommitmentType(str, Enum):
    RULES = "rules"
    SUBMISSIONS = "submissions"
    EVALUATIONS = "evaluations"
    RESULTS = "results"


class IntegrityCommitment(BaseModel):
    __tablename__ = "integrity_commitments"

    hackathon_id = Column(
        Integer,
        ForeignKey("hackathons.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    commitment_type = Column(String(20), nullable=False)
    commitment_hash = Column(String(64), nullable=False)
    commitment_data = Column(UniversalJSON, nullable=False)

    # Opaque external anchor (e.g. chain transaction); write-once per commit
    tx_ref = Column(String(255), nullable=True)
    block_ref = Column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint("hackathon_id", "commitment_type", name="uq_commitment_event_type"),
        CheckConstraint(
            "commitment_type IN ('rules', 'submissions', 'evaluations', 'results')",
            name="ck_commitment_type_valid"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "hackathon_id": self.hackathon_id,
            "commitment_type": self.commitment_type,
            "commitment_hash": self.commitment_hash,
            "commitment_data": self.commitment_data,
            "tx_ref": self.tx_ref,
            "block_ref": self.block_ref,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
