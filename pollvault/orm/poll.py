"""
Poll configuration and its entrant set.

A poll is one weighted election inside an event. Entrants are attached
through PollEntry so that a tie-breaker can reference the very same teams
as its parent poll.
"""
from enum import Enum

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index,
    Integer, String, UniqueConstraint
)
from sqlalchemy.orm import relationship

from pollvault.orm.base import BaseModel, UniversalJSON, isoformat


class VotingMode(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"
    RANKED = "ranked"


class VotingPermissions(str, Enum):
    VOTERS_ONLY = "voters_only"
    JUDGES_ONLY = "judges_only"
    VOTERS_AND_JUDGES = "voters_and_judges"


class VotingSequence(str, Enum):
    SIMULTANEOUS = "simultaneous"
    VOTERS_FIRST = "voters_first"


class Poll(BaseModel):
    """
    Weighted election with a time window and a tallying mode.

    rank_points_config is the resolved rank->points curve, persisted at
    creation so every tally of the poll applies the same curve.
    """
    __tablename__ = "polls"

    hackathon_id = Column(
        Integer,
        ForeignKey("hackathons.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    voting_mode = Column(String(20), nullable=False, default=VotingMode.SINGLE.value)
    voting_permissions = Column(
        String(30), nullable=False, default=VotingPermissions.VOTERS_AND_JUDGES.value
    )
    voter_weight = Column(Float, nullable=False, default=1.0)
    judge_weight = Column(Float, nullable=False, default=1.0)

    allow_self_vote = Column(Boolean, nullable=False, default=False)
    require_team_name_gate = Column(Boolean, nullable=False, default=False)
    allow_vote_editing = Column(Boolean, nullable=False, default=False)
    voting_sequence = Column(String(20), nullable=False, default=VotingSequence.SIMULTANEOUS.value)

    max_ranked_positions = Column(Integer, nullable=True)
    rank_points_config = Column(UniversalJSON, nullable=True)

    min_voter_participation = Column(Float, nullable=True)
    min_judge_participation = Column(Float, nullable=True)

    is_public_results = Column(Boolean, nullable=False, default=False)
    is_tie_breaker = Column(Boolean, nullable=False, default=False)
    tie_breaker_of = Column(Integer, ForeignKey("polls.id"), nullable=True, index=True)
    is_superseded = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(255), nullable=True)

    hackathon = relationship("Hackathon", back_populates="polls")
    entries = relationship(
        "PollEntry",
        back_populates="poll",
        order_by="PollEntry.id",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_poll_window"),
        CheckConstraint("voter_weight >= 0", name="ck_poll_voter_weight"),
        CheckConstraint("judge_weight >= 0", name="ck_poll_judge_weight"),
        CheckConstraint(
            "voting_mode IN ('single', 'multiple', 'ranked')",
            name="ck_poll_voting_mode"
        ),
        CheckConstraint(
            "voting_permissions IN ('voters_only', 'judges_only', 'voters_and_judges')",
            name="ck_poll_voting_permissions"
        ),
        CheckConstraint(
            "voting_sequence IN ('simultaneous', 'voters_first')",
            name="ck_poll_voting_sequence"
        ),
    )

    def weight_for(self, vote_type: str) -> float:
        return self.judge_weight if vote_type == "judge" else self.voter_weight

    def rules_dict(self):
        """Configuration fields covered by the event's rules commitment."""
        return {
            "poll_id": self.id,
            "name": self.name,
            "start_time": isoformat(self.start_time),
            "end_time": isoformat(self.end_time),
            "voting_mode": self.voting_mode,
            "voting_permissions": self.voting_permissions,
            "voter_weight": self.voter_weight,
            "judge_weight": self.judge_weight,
            "allow_self_vote": self.allow_self_vote,
            "require_team_name_gate": self.require_team_name_gate,
            "allow_vote_editing": self.allow_vote_editing,
            "voting_sequence": self.voting_sequence,
            "max_ranked_positions": self.max_ranked_positions,
            "rank_points_config": self.rank_points_config,
            "min_voter_participation": self.min_voter_participation,
            "min_judge_participation": self.min_judge_participation,
            "is_tie_breaker": self.is_tie_breaker,
            "tie_breaker_of": self.tie_breaker_of,
        }

    def to_dict(self):
        data = self.rules_dict()
        data.update({
            "id": self.id,
            "hackathon_id": self.hackathon_id,
            "is_public_results": self.is_public_results,
            "is_superseded": self.is_superseded,
            "created_by": self.created_by,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        })
        data.pop("poll_id", None)
        return data


class PollEntry(BaseModel):
    """Membership of a team in a poll's entrant set; id order is insertion order."""
    __tablename__ = "poll_entries"

    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="RESTRICT"), nullable=False)

    poll = relationship("Poll", back_populates="entries")
    team = relationship("Team", lazy="joined")

    __table_args__ = (
        UniqueConstraint("poll_id", "team_id", name="uq_poll_entry"),
        Index("idx_poll_entry_poll", "poll_id"),
    )
