"""
Denormalized "who did what in which event" record, for reporting only.
"""
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from pollvault.core.clock import utcnow
from pollvault.orm.base import BaseModel, isoformat


class ParticipationRole(str, Enum):
    ORGANIZER = "organizer"
    PARTICIPANT = "participant"
    JUDGE = "judge"
    VOTER = "voter"


class Participation(BaseModel):
    __tablename__ = "user_participation"

    user_identifier = Column(String(255), nullable=False, index=True)
    hackathon_id = Column(Integer, ForeignKey("hackathons.id", ondelete="CASCADE"), nullable=False)
    participation_role = Column(String(20), nullable=False)
    participated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_identifier", "hackathon_id", "participation_role",
            name="uq_participation_user_event_role"
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_identifier": self.user_identifier,
            "hackathon_id": self.hackathon_id,
            "participation_role": self.participation_role,
            "participated_at": isoformat(self.participated_at),
        }
