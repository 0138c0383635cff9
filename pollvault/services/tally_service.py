"""
Tally Engine.

Scores are recomputed on demand from every persisted ballot; nothing is
cached. The pure part (`tally_ballots`) takes entries and ballots and is
what the tests exercise directly. `compute_tally` loads a consistent
snapshot from the database and feeds it through.

Scoring:
    single/multiple: each ballot adds role_weight to every targeted entry
    ranked: each ranked entry earns curve(rank) * role_weight

The rank curve is resolved when the poll is created and stored on the
poll as rank_points_config, so a tally never depends on defaults that
could change later.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.exceptions import InvalidConfigurationError, NotFoundError, ResultsNotPublicError
from pollvault.orm.ballot import Ballot
from pollvault.orm.poll import Poll, PollEntry, VotingMode, VotingPermissions
from pollvault.services.electorate_service import Turnout, get_turnout

logger = logging.getLogger(__name__)

CURVE_TABLE = "table"
CURVE_LINEAR = "linear"
BASIS_MAX_POSITIONS = "max_positions"
BASIS_BALLOT_LENGTH = "ballot_length"

QUORUM_NOT_MET = "QUORUM_NOT_MET"

ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def decimal_str(value: Decimal) -> str:
    """Stable text form: no exponent, no trailing zeros."""
    if value == ZERO:
        return "0"
    return format(value.normalize(), "f")


# =============================================================================
# Rank -> points curve
# =============================================================================

@dataclass(frozen=True)
class RankPointsCurve:
    kind: str
    basis: Optional[str] = None
    points: Mapping[int, Decimal] = field(default_factory=dict)
    max_positions: Optional[int] = None

    def points_for(self, rank: int, ballot_length: int) -> Decimal:
        """Unweighted points for a rank. Never negative."""
        if self.kind == CURVE_TABLE:
            return max(ZERO, self.points.get(rank, ZERO))

        if self.basis == BASIS_MAX_POSITIONS and self.max_positions:
            n = self.max_positions
        else:
            n = ballot_length
        return max(ZERO, Decimal(n - rank + 1))

    def to_config(self) -> Dict[str, Any]:
        if self.kind == CURVE_TABLE:
            return {
                "kind": CURVE_TABLE,
                "points": {str(rank): float(p) if p != int(p) else int(p)
                           for rank, p in sorted(self.points.items())},
            }
        return {"kind": CURVE_LINEAR, "basis": self.basis}

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]], max_positions: Optional[int] = None) -> "RankPointsCurve":
        if not config:
            basis = BASIS_MAX_POSITIONS if max_positions else BASIS_BALLOT_LENGTH
            return cls(kind=CURVE_LINEAR, basis=basis, max_positions=max_positions)

        kind = config.get("kind")
        if kind == CURVE_TABLE:
            table = {int(rank): to_decimal(p) for rank, p in config.get("points", {}).items()}
            return cls(kind=CURVE_TABLE, points=table, max_positions=max_positions)
        if kind == CURVE_LINEAR:
            return cls(kind=CURVE_LINEAR, basis=config.get("basis", BASIS_BALLOT_LENGTH), max_positions=max_positions)

        raise InvalidConfigurationError(f"Unknown rank curve kind: {kind}")


def resolve_rank_points_config(
    voting_mode: str,
    max_ranked_positions: Optional[int],
    explicit: Any = None,
) -> Optional[Dict[str, Any]]:
    """
    Decide the curve persisted on a new poll.

    `explicit` may be a list of points by rank (`[3, 2, 1]`), a mapping of
    rank to points, or a full config dict. Without it the curve is linear
    on max_ranked_positions when set, else on the ballot length.
    Non-ranked polls have no curve.
    """
    if voting_mode != VotingMode.RANKED.value:
        if explicit:
            raise InvalidConfigurationError("Rank points only apply to ranked polls")
        return None

    if explicit is None or explicit == {} or explicit == []:
        basis = BASIS_MAX_POSITIONS if max_ranked_positions else BASIS_BALLOT_LENGTH
        return {"kind": CURVE_LINEAR, "basis": basis}

    if isinstance(explicit, Mapping) and "kind" in explicit:
        if explicit["kind"] == CURVE_LINEAR:
            basis = explicit.get("basis", BASIS_BALLOT_LENGTH)
            if basis not in (BASIS_MAX_POSITIONS, BASIS_BALLOT_LENGTH):
                raise InvalidConfigurationError(f"Unknown rank curve basis: {basis}")
            if basis == BASIS_MAX_POSITIONS and not max_ranked_positions:
                raise InvalidConfigurationError("max_positions basis requires max_ranked_positions")
            return {"kind": CURVE_LINEAR, "basis": basis}
        if explicit["kind"] != CURVE_TABLE:
            raise InvalidConfigurationError(f"Unknown rank curve kind: {explicit['kind']}")
        explicit = explicit.get("points") or {}

    if isinstance(explicit, (list, tuple)):
        table = {rank: p for rank, p in enumerate(explicit, start=1)}
    elif isinstance(explicit, Mapping):
        table = {}
        for rank, p in explicit.items():
            try:
                table[int(rank)] = p
            except (TypeError, ValueError):
                raise InvalidConfigurationError(f"Invalid rank in points table: {rank!r}")
    else:
        raise InvalidConfigurationError("Rank points must be a list or a mapping")

    for rank, p in table.items():
        if rank < 1:
            raise InvalidConfigurationError(f"Ranks start at 1, got {rank}")
        if isinstance(p, bool) or not isinstance(p, (int, float, Decimal)) or p < 0:
            raise InvalidConfigurationError(f"Points for rank {rank} must be a non-negative number")

    return RankPointsCurve(
        kind=CURVE_TABLE,
        points={rank: to_decimal(p) for rank, p in table.items()},
    ).to_config()


def curve_for_poll(poll: Poll) -> RankPointsCurve:
    return RankPointsCurve.from_config(poll.rank_points_config, poll.max_ranked_positions)


# =============================================================================
# Tally
# =============================================================================

@dataclass
class TallyRow:
    team_id: int
    team_name: str
    voter_score: Decimal = ZERO
    judge_score: Decimal = ZERO
    vote_count: int = 0
    voter_vote_count: int = 0
    judge_vote_count: int = 0
    rank_histogram: Optional[Dict[int, int]] = None

    @property
    def total_score(self) -> Decimal:
        return self.voter_score + self.judge_score

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "team_id": self.team_id,
            "team_name": self.team_name,
            "total_score": decimal_str(self.total_score),
            "voter_score": decimal_str(self.voter_score),
            "judge_score": decimal_str(self.judge_score),
            "vote_count": self.vote_count,
            "voter_vote_count": self.voter_vote_count,
            "judge_vote_count": self.judge_vote_count,
        }
        if self.rank_histogram is not None:
            data["rank_histogram"] = {str(k): v for k, v in sorted(self.rank_histogram.items())}
        return data


@dataclass
class QuorumWarning:
    role: str
    turnout_percent: Decimal
    threshold_percent: Decimal
    code: str = QUORUM_NOT_MET

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "role": self.role,
            "turnout_percent": str(self.turnout_percent),
            "threshold_percent": decimal_str(self.threshold_percent),
        }


@dataclass
class TallyResult:
    poll_id: Optional[int]
    voting_mode: str
    rows: List[TallyRow]
    ballot_count: int = 0
    warnings: List[QuorumWarning] = field(default_factory=list)
    turnout: Optional[Turnout] = None

    @property
    def below_quorum(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "voting_mode": self.voting_mode,
            "ballot_count": self.ballot_count,
            "below_quorum": self.below_quorum,
            "warnings": [w.to_dict() for w in self.warnings],
            "turnout": self.turnout.to_dict() if self.turnout else None,
            "rows": [r.to_dict() for r in self.rows],
        }


def tally_ballots(
    entries: Sequence[Tuple[int, str]],
    ballots: Iterable[Ballot],
    voting_mode: str,
    voter_weight,
    judge_weight,
    curve: Optional[RankPointsCurve] = None,
    poll_id: Optional[int] = None,
) -> TallyResult:
    """
    Pure tally over (team_id, team_name) entries in insertion order.

    Ballots targeting a team that is not an entry are ignored. The result
    is sorted by total score descending, ties kept in entry order; it does
    not depend on the order ballots are supplied in.
    """
    weights = {"voter": to_decimal(voter_weight), "judge": to_decimal(judge_weight)}
    ranked = voting_mode == VotingMode.RANKED.value
    if ranked and curve is None:
        curve = RankPointsCurve.from_config(None)

    rows: Dict[int, TallyRow] = {}
    order: Dict[int, int] = {}
    for index, (team_id, team_name) in enumerate(entries):
        rows[team_id] = TallyRow(
            team_id=team_id,
            team_name=team_name,
            rank_histogram={} if ranked else None,
        )
        order[team_id] = index

    ballot_count = 0
    for ballot in ballots:
        ballot_count += 1
        role = ballot.vote_type
        weight = weights[role]
        earned: Dict[int, Decimal] = defaultdict(lambda: ZERO)

        if ranked:
            rankings = ballot.rankings or []
            for choice in rankings:
                team_id = choice["team_id"]
                if team_id not in rows:
                    continue
                rank = int(choice["rank"])
                earned[team_id] += curve.points_for(rank, len(rankings)) * weight
                histogram = rows[team_id].rank_histogram
                histogram[rank] = histogram.get(rank, 0) + 1
        else:
            for team_id in set(ballot.targeted_team_ids()):
                if team_id in rows:
                    earned[team_id] += weight

        for team_id, points in earned.items():
            row = rows[team_id]
            if role == "judge":
                row.judge_score += points
                row.judge_vote_count += 1
            else:
                row.voter_score += points
                row.voter_vote_count += 1
            row.vote_count += 1

    ordered = sorted(rows.values(), key=lambda r: (-r.total_score, order[r.team_id]))
    return TallyResult(poll_id=poll_id, voting_mode=voting_mode, rows=ordered, ballot_count=ballot_count)


def quorum_warnings(poll: Poll, turnout: Turnout) -> List[QuorumWarning]:
    """Warnings for every permitted role whose turnout is under its threshold."""
    checks = []
    if poll.voting_permissions != VotingPermissions.JUDGES_ONLY.value:
        checks.append(("voter", poll.min_voter_participation))
    if poll.voting_permissions != VotingPermissions.VOTERS_ONLY.value:
        checks.append(("judge", poll.min_judge_participation))

    warnings = []
    for role, threshold in checks:
        if threshold is None:
            continue
        role_turnout = turnout.for_role(role)
        threshold = to_decimal(threshold)
        if role_turnout.is_below(threshold):
            warnings.append(QuorumWarning(
                role=role, turnout_percent=role_turnout.percent, threshold_percent=threshold
            ))
    return warnings


async def _begin_snapshot(db: AsyncSession) -> None:
    """Open the read transaction as REPEATABLE READ on PostgreSQL."""
    if db.in_transaction():
        return
    if db.get_bind().dialect.name == "postgresql":
        await db.connection(execution_options={"isolation_level": "REPEATABLE READ"})


async def compute_tally(db: AsyncSession, poll_id: int) -> TallyResult:
    await _begin_snapshot(db)

    poll = await db.get(Poll, poll_id)
    if poll is None:
        raise NotFoundError(f"Poll {poll_id} not found")

    entry_rows = await db.execute(
        select(PollEntry).where(PollEntry.poll_id == poll_id).order_by(PollEntry.id)
    )
    entries = [(e.team_id, e.team.team_name) for e in entry_rows.unique().scalars().all()]

    ballot_rows = await db.execute(
        select(Ballot).where(Ballot.poll_id == poll_id).order_by(Ballot.id)
    )
    ballots = list(ballot_rows.scalars().all())

    result = tally_ballots(
        entries,
        ballots,
        poll.voting_mode,
        poll.voter_weight,
        poll.judge_weight,
        curve=curve_for_poll(poll) if poll.voting_mode == VotingMode.RANKED.value else None,
        poll_id=poll.id,
    )
    result.turnout = await get_turnout(db, poll_id)
    result.warnings = quorum_warnings(poll, result.turnout)

    if result.below_quorum:
        logger.warning(
            f"Poll {poll_id} below quorum: "
            + ", ".join(f"{w.role} {w.turnout_percent}% < {w.threshold_percent}%" for w in result.warnings)
        )
    return result


async def compute_public_tally(db: AsyncSession, poll_id: int) -> TallyResult:
    """compute_tally() for polls that publish their results."""
    poll = await db.get(Poll, poll_id)
    if poll is None:
        raise NotFoundError(f"Poll {poll_id} not found")
    if not poll.is_public_results:
        raise ResultsNotPublicError(f"Results of poll {poll_id} are not public", {"poll_id": poll_id})
    return await compute_tally(db, poll_id)


def results_payload(tally: TallyResult) -> Dict[str, Any]:
    """Canonical dict of a tally, as covered by the results commitment."""
    return {
        "poll_id": tally.poll_id,
        "voting_mode": tally.voting_mode,
        "ballot_count": tally.ballot_count,
        "below_quorum": tally.below_quorum,
        "rows": [r.to_dict() for r in tally.rows],
    }


async def compute_event_results(db: AsyncSession, hackathon_id: int) -> Dict[str, Any]:
    """Tallies of every poll of an event, in poll id order."""
    result = await db.execute(
        select(Poll.id).where(Poll.hackathon_id == hackathon_id).order_by(Poll.id)
    )
    polls = []
    for poll_id in result.scalars().all():
        polls.append(results_payload(await compute_tally(db, poll_id)))
    return {"hackathon_id": hackathon_id, "polls": polls}
