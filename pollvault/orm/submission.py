"""
Team submissions attached to an event. Locked when the event closes.
"""
from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String

from pollvault.orm.base import BaseModel, UniversalJSON, isoformat


class HackathonSubmission(BaseModel):
    __tablename__ = "hackathon_submissions"

    hackathon_id = Column(Integer, ForeignKey("hackathons.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    submission_data = Column(UniversalJSON, nullable=False)
    submission_hash = Column(String(64), nullable=False)
    submitted_by = Column(String(255), nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_submission_hackathon", "hackathon_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "hackathon_id": self.hackathon_id,
            "team_id": self.team_id,
            "submission_data": self.submission_data,
            "submission_hash": self.submission_hash,
            "submitted_by": self.submitted_by,
            "is_locked": self.is_locked,
            "created_at": isoformat(self.created_at),
        }
