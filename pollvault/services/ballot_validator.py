"""
Ballot shape rules, one function per ballot type.

`validate_shape` dispatches on the payload class and returns the
normalized payload that gets persisted. Every failure raises
InvalidBallotShapeError with a `rule` detail naming what was violated.
"""
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Dict, List, Optional, Sequence

from pollvault.exceptions import InvalidBallotShapeError
from pollvault.schemas.ballots import MultipleBallot, RankedBallot, SingleBallot


@dataclass(frozen=True)
class ShapeContext:
    voting_mode: str
    entry_team_ids: Sequence[int]
    vote_type: str
    max_ranked_positions: Optional[int] = None

    @property
    def max_positions(self) -> int:
        return self.max_ranked_positions or len(self.entry_team_ids)


def _reject(rule: str, message: str, **details) -> InvalidBallotShapeError:
    details["rule"] = rule
    return InvalidBallotShapeError(message, details)


def _check_targets_exist(team_ids: Sequence[int], ctx: ShapeContext) -> None:
    known = set(ctx.entry_team_ids)
    unknown = [t for t in team_ids if t not in known]
    if unknown:
        raise _reject("unknown_team", f"Teams not in this poll: {unknown}", team_ids=unknown)


def validate_shape(payload, ctx: ShapeContext) -> Dict[str, Any]:
    mode = getattr(payload, "mode", None)
    if mode != ctx.voting_mode:
        raise _reject(
            "mode_mismatch",
            f"Poll expects a {ctx.voting_mode} ballot, got {mode}",
            expected=ctx.voting_mode, received=mode,
        )
    return _validate(payload, ctx)


@singledispatch
def _validate(payload, ctx: ShapeContext) -> Dict[str, Any]:
    raise _reject("unknown_mode", f"Unsupported ballot type {type(payload).__name__}")


@_validate.register
def _(payload: SingleBallot, ctx: ShapeContext) -> Dict[str, Any]:
    _check_targets_exist([payload.team_id], ctx)
    return {"team_id_target": payload.team_id, "reason": payload.reason}


@_validate.register
def _(payload: MultipleBallot, ctx: ShapeContext) -> Dict[str, Any]:
    if not payload.team_ids:
        raise _reject("empty", "Select at least one team")
    if len(set(payload.team_ids)) != len(payload.team_ids):
        raise _reject("duplicate_team", "Each team may be selected only once")
    _check_targets_exist(payload.team_ids, ctx)
    return {"teams": list(payload.team_ids), "reason": payload.reason}


@_validate.register
def _(payload: RankedBallot, ctx: ShapeContext) -> Dict[str, Any]:
    rankings = payload.rankings
    limit = ctx.max_positions

    if not rankings:
        raise _reject("empty", "Rank at least one team")
    if len(rankings) > limit:
        raise _reject("too_many", f"At most {limit} teams may be ranked", limit=limit)

    team_ids = [c.team_id for c in rankings]
    if len(set(team_ids)) != len(team_ids):
        raise _reject("duplicate_team", "Each team may be ranked only once")

    ranks = [c.rank for c in rankings]
    if any(r < 1 for r in ranks):
        raise _reject("rank_not_positive", "Ranks must be positive")
    if len(set(ranks)) != len(ranks):
        raise _reject("duplicate_rank", "Each rank may be used only once")
    if max(ranks) > limit:
        raise _reject("rank_out_of_range", f"Ranks may not exceed {limit}", limit=limit)

    _check_targets_exist(team_ids, ctx)

    if ctx.vote_type == "judge":
        missing = [c.team_id for c in rankings if not (c.reason and c.reason.strip())]
        if missing:
            raise _reject("reason_required", "Judges must give a reason for every ranked team", team_ids=missing)

    normalized: List[Dict[str, Any]] = [
        {"team_id": c.team_id, "rank": c.rank, "reason": c.reason}
        for c in sorted(rankings, key=lambda c: c.rank)
    ]
    return {"rankings": normalized}
