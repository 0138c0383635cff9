"""
Ballot payloads.

A ballot is a tagged union on `mode`. Request parsing only checks types;
the legality of a ballot (targets exist, ranks unique, ...) is decided
by the ballot validator so that every shape problem is reported as
INVALID_BALLOT_SHAPE rather than a generic 422.
"""
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class SingleBallot(BaseModel):
    mode: Literal["single"] = "single"
    team_id: int
    reason: Optional[str] = None

    def target_ids(self) -> List[int]:
        return [self.team_id]


class MultipleBallot(BaseModel):
    mode: Literal["multiple"] = "multiple"
    team_ids: List[int] = Field(default_factory=list)
    reason: Optional[str] = None

    def target_ids(self) -> List[int]:
        return list(self.team_ids)


class RankedChoice(BaseModel):
    team_id: int
    rank: int
    reason: Optional[str] = None


class RankedBallot(BaseModel):
    mode: Literal["ranked"] = "ranked"
    rankings: List[RankedChoice] = Field(default_factory=list)

    def target_ids(self) -> List[int]:
        return [choice.team_id for choice in self.rankings]


BallotPayload = Annotated[
    Union[SingleBallot, MultipleBallot, RankedBallot],
    Field(discriminator="mode"),
]
