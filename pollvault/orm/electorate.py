"""
Electorate members: token-bearing voters and email-identified judges.

Both carry a ballot_version counter. Submissions claim a member with
a conditional UPDATE on that counter, which serializes ballots per member
without locking the whole poll.
"""
from enum import Enum

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String,
    UniqueConstraint
)
from sqlalchemy.orm import relationship

from pollvault.orm.base import BaseModel, isoformat


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class VoterToken(BaseModel):
    """One voting credential. Only the SHA-256 of the bearer token is stored."""
    __tablename__ = "voter_tokens"

    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    assigned_team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)

    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    ballot_version = Column(Integer, nullable=False, default=0)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)

    assigned_team = relationship("Team", lazy="joined")

    __table_args__ = (
        Index("idx_voter_token_poll", "poll_id"),
    )

    @property
    def identity(self) -> str:
        return self.email or f"token:{self.id}"

    def to_dict(self):
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "email": self.email,
            "assigned_team_id": self.assigned_team_id,
            "used": self.used,
            "used_at": isoformat(self.used_at),
            "delivery_status": self.delivery_status,
        }


class PollJudge(BaseModel):
    """Judge registered on a poll; identified by lower-cased email."""
    __tablename__ = "poll_judges"

    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)

    has_voted = Column(Boolean, nullable=False, default=False)
    voted_at = Column(DateTime, nullable=True)
    ballot_version = Column(Integer, nullable=False, default=0)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)

    __table_args__ = (
        UniqueConstraint("poll_id", "email", name="uq_poll_judge_email"),
        Index("idx_poll_judge_poll", "poll_id"),
    )

    @property
    def identity(self) -> str:
        return self.email

    def to_dict(self):
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "email": self.email,
            "name": self.name,
            "has_voted": self.has_voted,
            "voted_at": isoformat(self.voted_at),
            "delivery_status": self.delivery_status,
        }
