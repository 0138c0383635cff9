"""
Event ("hackathon") lifecycle record.

The status column is only ever changed by the lifecycle service, through a
conditional UPDATE keyed on the status that was read.
"""
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, Index, String, Text
from sqlalchemy.orm import relationship

from pollvault.orm.base import BaseModel, isoformat


class HackathonStatus(str, Enum):
    """Event lifecycle status. FINALIZED is terminal."""
    DRAFT = "draft"
    LIVE = "live"
    CLOSED = "closed"
    FINALIZED = "finalized"


class Hackathon(BaseModel):
    """
    Parent event for one or more polls.

    Attributes:
        status: Current lifecycle status
        start_date, end_date: Event window; reaching end_date forces FINALIZED
        voting_closes_at: Reaching it forces LIVE events to CLOSED
        submission_deadline: Informational deadline for team submissions
        voter_phase_completed_at: Organizer signal that unlocks judges
            on voters_first polls
        submissions_locked_at: Set once, when submissions were locked on
            entering CLOSED
    """
    __tablename__ = "hackathons"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=HackathonStatus.DRAFT.value)

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    voting_closes_at = Column(DateTime, nullable=True)
    submission_deadline = Column(DateTime, nullable=True)

    voter_phase_completed_at = Column(DateTime, nullable=True)
    submissions_locked_at = Column(DateTime, nullable=True)

    created_by = Column(String(255), nullable=True)

    polls = relationship("Poll", back_populates="hackathon", order_by="Poll.id")

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'live', 'closed', 'finalized')",
            name="ck_hackathon_status_valid"
        ),
        Index("idx_hackathon_status", "status"),
    )

    @property
    def voter_phase_complete(self) -> bool:
        return self.voter_phase_completed_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "start_date": isoformat(self.start_date),
            "end_date": isoformat(self.end_date),
            "voting_closes_at": isoformat(self.voting_closes_at),
            "submission_deadline": isoformat(self.submission_deadline),
            "voter_phase_completed_at": isoformat(self.voter_phase_completed_at),
            "submissions_locked_at": isoformat(self.submissions_locked_at),
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
