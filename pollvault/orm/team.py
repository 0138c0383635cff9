"""
Competing entries ("teams").
"""
from sqlalchemy import Column, ForeignKey, Integer, String, Text

from pollvault.orm.base import BaseModel, UniversalJSON, isoformat


class Team(BaseModel):
    """
    A candidate being voted on.

    Teams belong to an event and join polls through PollEntry.
    owner_identity (typically an email) feeds self-vote gating.
    """
    __tablename__ = "teams"

    hackathon_id = Column(
        Integer,
        ForeignKey("hackathons.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    team_name = Column(String(255), nullable=False)
    project_name = Column(String(255), nullable=True)
    project_description = Column(Text, nullable=True)
    pitch = Column(Text, nullable=True)
    live_site_url = Column(String(500), nullable=True)
    github_url = Column(String(500), nullable=True)
    team_metadata = Column("metadata", UniversalJSON, nullable=True)
    owner_identity = Column(String(255), nullable=True)

    def project_fields(self):
        return {
            "project_name": self.project_name,
            "project_description": self.project_description,
            "pitch": self.pitch,
            "live_site_url": self.live_site_url,
            "github_url": self.github_url,
            "metadata": self.team_metadata,
            "owner_identity": self.owner_identity,
        }

    def to_dict(self):
        data = {
            "id": self.id,
            "hackathon_id": self.hackathon_id,
            "team_name": self.team_name,
            "created_at": isoformat(self.created_at),
        }
        data.update(self.project_fields())
        return data
