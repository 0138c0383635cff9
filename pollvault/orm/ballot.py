"""
Accepted ballots.

Rows are immutable. When a poll allows vote editing the previous row is
deleted and a new one inserted in the same transaction, with revision
carrying the member's ballot_version.
"""
from enum import Enum

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String,
    UniqueConstraint
)

from pollvault.core.clock import utcnow
from pollvault.orm.base import BaseModel, UniversalJSON, isoformat


class VoteType(str, Enum):
    VOTER = "voter"
    JUDGE = "judge"


class Ballot(BaseModel):
    """
    One accepted vote.

    Payload columns by mode:
        single:   team_id_target
        multiple: teams (list of team ids)
        ranked:   rankings (list of {team_id, rank, points, reason})
    """
    __tablename__ = "ballots"

    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False)
    vote_type = Column(String(10), nullable=False)
    voter_token_id = Column(Integer, ForeignKey("voter_tokens.id"), nullable=True)
    judge_id = Column(Integer, ForeignKey("poll_judges.id"), nullable=True)

    voting_mode = Column(String(20), nullable=False)
    team_id_target = Column(Integer, nullable=True)
    teams = Column(UniversalJSON, nullable=True)
    rankings = Column(UniversalJSON, nullable=True)
    reason = Column(String(2000), nullable=True)

    revision = Column(Integer, nullable=False, default=1)
    vote_hash = Column(String(64), nullable=False)
    submitted_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("poll_id", "voter_token_id", name="uq_ballot_voter_token"),
        UniqueConstraint("poll_id", "judge_id", name="uq_ballot_judge"),
        CheckConstraint("vote_type IN ('voter', 'judge')", name="ck_ballot_vote_type"),
        CheckConstraint(
            "(voter_token_id IS NOT NULL AND judge_id IS NULL) OR "
            "(voter_token_id IS NULL AND judge_id IS NOT NULL)",
            name="ck_ballot_single_member"
        ),
        Index("idx_ballot_poll", "poll_id"),
    )

    def targeted_team_ids(self):
        """Team ids touched by this ballot, in ballot order."""
        if self.voting_mode == "single":
            return [self.team_id_target] if self.team_id_target is not None else []
        if self.voting_mode == "multiple":
            return list(self.teams or [])
        return [r["team_id"] for r in (self.rankings or [])]

    def to_dict(self):
        return {
            "id": self.id,
            "poll_id": self.poll_id,
            "vote_type": self.vote_type,
            "voting_mode": self.voting_mode,
            "team_id_target": self.team_id_target,
            "teams": self.teams,
            "rankings": self.rankings,
            "reason": self.reason,
            "revision": self.revision,
            "vote_hash": self.vote_hash,
            "submitted_at": isoformat(self.submitted_at),
        }
