"""
Vote Submission Validator.

submit_ballot runs the checks below in order; the first failure decides
the rejection:

    1. window       poll open, event still taking ballots, poll not superseded
    2. role         allowed by voting_permissions
    3. sequence     voters_first polls hold judges until the voter phase ends
    4. identity     token/email resolves to a member of this poll's electorate
    5. consumed     re-submission is either refused (returns the stored
                    ballot) or replaces it when editing is enabled
    6. self-vote    members may not pick their own team unless allowed
    7. shape        per-mode ballot rules (see ballot_validator)
    8. persist      ballot stored, member marked consumed

Members are serialized by a conditional UPDATE on ballot_version, so two
concurrent submissions for the same member can never both count.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.core.clock import utcnow
from pollvault.exceptions import (
    ConcurrentSubmissionError, InvalidBallotShapeError, NotFoundError,
    OutOfWindowError, RoleNotAllowedError, SelfVoteForbiddenError,
    SequenceViolationError, UnknownVoterError,
)
from pollvault.orm.ballot import Ballot, VoteType
from pollvault.orm.electorate import PollJudge
from pollvault.orm.hackathon import Hackathon, HackathonStatus
from pollvault.orm.participation import ParticipationRole
from pollvault.orm.poll import Poll, PollEntry, VotingMode, VotingPermissions, VotingSequence
from pollvault.schemas.ballots import BallotPayload
from pollvault.services.ballot_validator import ShapeContext, validate_shape
from pollvault.services.electorate_service import get_judge, get_voter_token_by_token, normalize_email
from pollvault.services.integrity_service import compute_commitment_hash
from pollvault.services.participation_service import track_participation
from pollvault.services.tally_service import curve_for_poll, decimal_str, to_decimal

logger = logging.getLogger(__name__)

GUARD_TEAM_NAME_GATE = "team_name_gate"

ALLOWED_ROLES = {
    VotingPermissions.VOTERS_ONLY.value: {VoteType.VOTER.value},
    VotingPermissions.JUDGES_ONLY.value: {VoteType.JUDGE.value},
    VotingPermissions.VOTERS_AND_JUDGES.value: {VoteType.VOTER.value, VoteType.JUDGE.value},
}

_payload_adapter = TypeAdapter(BallotPayload)


class SubmissionStatus(str, Enum):
    ACCEPTED = "accepted"
    REPLACED = "replaced"
    ALREADY_VOTED = "already_voted"


@dataclass
class SubmissionOutcome:
    status: SubmissionStatus
    ballot: Ballot
    points: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def already_voted(self) -> bool:
        return self.status == SubmissionStatus.ALREADY_VOTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "already_voted": self.already_voted,
            "ballot": self.ballot.to_dict(),
            "points": self.points,
        }


# =============================================================================
# Pure checks (steps 1-3, 6)
# =============================================================================

def check_window(poll: Poll, hackathon: Hackathon, now: datetime) -> None:
    details = {"poll_id": poll.id}
    if poll.is_superseded:
        raise OutOfWindowError("This tie-breaker has been superseded", dict(details, reason="superseded"))
    if hackathon.status in (HackathonStatus.CLOSED.value, HackathonStatus.FINALIZED.value):
        raise OutOfWindowError(
            f"Hackathon is {hackathon.status}; voting is over",
            dict(details, reason="event_closed", status=hackathon.status),
        )
    if hackathon.voting_closes_at is not None and now >= hackathon.voting_closes_at:
        raise OutOfWindowError("Voting for this hackathon has closed", dict(details, reason="voting_closed"))
    if now < poll.start_time:
        raise OutOfWindowError("Voting has not started yet", dict(details, reason="not_started"))
    if now > poll.end_time:
        raise OutOfWindowError("Voting has ended", dict(details, reason="ended"))


def check_role(poll: Poll, role: str) -> None:
    if role not in ALLOWED_ROLES[poll.voting_permissions]:
        raise RoleNotAllowedError(
            f"{role.capitalize()}s cannot vote on this poll",
            {"role": role, "voting_permissions": poll.voting_permissions},
        )


def check_sequence(poll: Poll, role: str, voter_phase_complete: bool) -> None:
    if (
        poll.voting_sequence == VotingSequence.VOTERS_FIRST.value
        and role == VoteType.JUDGE.value
        and not voter_phase_complete
    ):
        raise SequenceViolationError(
            "Judges may vote once the voter phase is complete",
            {"voting_sequence": poll.voting_sequence},
        )


def check_self_vote(
    poll: Poll,
    target_ids: List[int],
    owners: Dict[int, Optional[str]],
    assigned_team_id: Optional[int],
    member_email: Optional[str],
) -> None:
    if poll.allow_self_vote:
        return
    member_email = normalize_email(member_email)
    for team_id in target_ids:
        own_team = assigned_team_id is not None and team_id == assigned_team_id
        own_entry = member_email is not None and normalize_email(owners.get(team_id)) == member_email
        if own_team or own_entry:
            raise SelfVoteForbiddenError("You cannot vote for your own team", {"team_id": team_id})


def parse_payload(payload: Union[Dict[str, Any], Any]):
    if isinstance(payload, dict):
        try:
            return _payload_adapter.validate_python(payload)
        except ValidationError as e:
            raise InvalidBallotShapeError(
                "Ballot payload is malformed",
                {"rule": "malformed", "errors": [err["msg"] for err in e.errors()]},
            )
    return payload


def derived_points(ballot: Ballot, poll: Poll) -> List[Dict[str, Any]]:
    """Per-team points a ballot contributes, unweighted and weighted."""
    weight = to_decimal(poll.weight_for(ballot.vote_type))
    if ballot.voting_mode == VotingMode.RANKED.value:
        curve = curve_for_poll(poll)
        rankings = ballot.rankings or []
        pairs = [(r["team_id"], curve.points_for(int(r["rank"]), len(rankings))) for r in rankings]
    else:
        pairs = [(team_id, Decimal(1)) for team_id in ballot.targeted_team_ids()]
    return [
        {"team_id": team_id, "points": decimal_str(p), "weighted_points": decimal_str(p * weight)}
        for team_id, p in pairs
    ]


# =============================================================================
# Submission
# =============================================================================

async def _resolve_member(db: AsyncSession, poll: Poll, role: str, identity: str):
    if not identity:
        raise UnknownVoterError("Missing voter credentials")

    if role == VoteType.JUDGE.value:
        judge = await get_judge(db, poll.id, identity)
        if judge is None:
            raise UnknownVoterError("You are not a judge on this poll")
        return judge

    token = await get_voter_token_by_token(db, poll.id, identity)
    if token is None:
        raise UnknownVoterError("Invalid voter token for this poll")
    return token


def check_team_name_gate(poll: Poll, member, team_name: Optional[str]) -> None:
    if not poll.require_team_name_gate or isinstance(member, PollJudge):
        return
    expected = member.assigned_team.team_name if member.assigned_team else None
    supplied = (team_name or "").strip()
    if expected is None or supplied.casefold() != expected.strip().casefold():
        raise UnknownVoterError(
            "Team name does not match the team assigned to this token",
            {"guard": GUARD_TEAM_NAME_GATE},
        )


def _member_filter(role: str, member):
    if role == VoteType.JUDGE.value:
        return Ballot.judge_id == member.id
    return Ballot.voter_token_id == member.id


def _is_consumed(member) -> bool:
    return bool(member.has_voted) if isinstance(member, PollJudge) else bool(member.used)


async def _existing_ballot(db: AsyncSession, poll_id: int, role: str, member) -> Optional[Ballot]:
    result = await db.execute(
        select(Ballot).where(Ballot.poll_id == poll_id, _member_filter(role, member))
    )
    return result.scalar_one_or_none()


async def claim_member(db: AsyncSession, member, expected_version: int, now: datetime) -> bool:
    """Bump ballot_version iff nobody else did since we read it."""
    model = type(member)
    if model is PollJudge:
        values = {"has_voted": True, "voted_at": now}
    else:
        values = {"used": True, "used_at": now}
    values["ballot_version"] = expected_version + 1

    result = await db.execute(
        update(model)
        .where(model.id == member.id, model.ballot_version == expected_version)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _open_poll(
    db: AsyncSession,
    poll_id: int,
    role: str,
    now: datetime,
    voter_phase_complete: Optional[bool],
):
    poll = await db.get(Poll, poll_id)
    if poll is None:
        raise NotFoundError(f"Poll {poll_id} not found")
    hackathon = await db.get(Hackathon, poll.hackathon_id)

    check_window(poll, hackathon, now)
    check_role(poll, role)
    if voter_phase_complete is None:
        voter_phase_complete = hackathon.voter_phase_completed_at is not None
    check_sequence(poll, role, voter_phase_complete)
    return poll, hackathon


async def _poll_entries(db: AsyncSession, poll_id: int) -> List[PollEntry]:
    result = await db.execute(
        select(PollEntry).where(PollEntry.poll_id == poll_id).order_by(PollEntry.id)
    )
    return list(result.unique().scalars().all())


async def submit_ballot(
    db: AsyncSession,
    poll_id: int,
    role: str,
    identity: str,
    payload,
    team_name: Optional[str] = None,
    now: Optional[datetime] = None,
    voter_phase_complete: Optional[bool] = None,
) -> SubmissionOutcome:
    """
    Validate and record one ballot.

    Args:
        role: "voter" or "judge"
        identity: plain voter token, or judge email
        payload: SingleBallot | MultipleBallot | RankedBallot, or an
            equivalent dict tagged with `mode`
        voter_phase_complete: overrides the event's voter-phase marker

    Raises:
        One BallotRejectedError subclass per failed check.
    """
    now = now or utcnow()
    role = VoteType(role).value

    # 1-3
    poll, hackathon = await _open_poll(db, poll_id, role, now, voter_phase_complete)

    # 4
    member = await _resolve_member(db, poll, role, identity)
    check_team_name_gate(poll, member, team_name)
    expected_version = member.ballot_version
    consumed = _is_consumed(member)

    # 5
    if consumed and not poll.allow_vote_editing:
        existing = await _existing_ballot(db, poll.id, role, member)
        if existing is not None:
            logger.info(f"Repeat submission by {role} {member.id} on poll {poll.id}")
            return SubmissionOutcome(SubmissionStatus.ALREADY_VOTED, existing, derived_points(existing, poll))

    ballot_payload = parse_payload(payload)

    # 6
    entries = await _poll_entries(db, poll.id)
    owners = {e.team_id: e.team.owner_identity for e in entries}
    check_self_vote(
        poll,
        ballot_payload.target_ids(),
        owners,
        getattr(member, "assigned_team_id", None),
        member.email,
    )

    # 7
    fields = validate_shape(
        ballot_payload,
        ShapeContext(
            voting_mode=poll.voting_mode,
            entry_team_ids=[e.team_id for e in entries],
            vote_type=role,
            max_ranked_positions=poll.max_ranked_positions,
        ),
    )

    # 8
    if not await claim_member(db, member, expected_version, now):
        logger.warning(f"Lost submission race for {role} {member.id} on poll {poll.id}")
        if not poll.allow_vote_editing:
            existing = await _existing_ballot(db, poll.id, role, member)
            if existing is not None:
                return SubmissionOutcome(SubmissionStatus.ALREADY_VOTED, existing, derived_points(existing, poll))
        raise ConcurrentSubmissionError(
            "Another ballot for this member was recorded at the same time; retry",
            {"poll_id": poll.id},
        )

    if consumed:
        previous = await _existing_ballot(db, poll.id, role, member)
        if previous is not None:
            await db.delete(previous)
            # the replacement reuses the unique (poll, member) slot
            await db.flush()

    revision = expected_version + 1
    if poll.voting_mode == VotingMode.RANKED.value:
        curve = curve_for_poll(poll)
        rankings = fields["rankings"]
        for choice in rankings:
            choice["points"] = decimal_str(curve.points_for(choice["rank"], len(rankings)))

    ballot = Ballot(
        poll_id=poll.id,
        vote_type=role,
        voter_token_id=member.id if role == VoteType.VOTER.value else None,
        judge_id=member.id if role == VoteType.JUDGE.value else None,
        voting_mode=poll.voting_mode,
        team_id_target=fields.get("team_id_target"),
        teams=fields.get("teams"),
        rankings=fields.get("rankings"),
        reason=fields.get("reason"),
        revision=revision,
        submitted_at=now,
    )
    ballot.vote_hash = compute_commitment_hash({
        "poll_id": poll.id,
        "vote_type": role,
        "member_id": member.id,
        "voting_mode": poll.voting_mode,
        "team_id_target": ballot.team_id_target,
        "teams": ballot.teams,
        "rankings": ballot.rankings,
        "revision": revision,
        "submitted_at": now,
    })
    db.add(ballot)
    await db.flush()
    await db.refresh(member)

    await track_participation(
        db,
        member.identity,
        hackathon.id,
        ParticipationRole.JUDGE if role == VoteType.JUDGE.value else ParticipationRole.VOTER,
        now=now,
    )

    status = SubmissionStatus.REPLACED if consumed else SubmissionStatus.ACCEPTED
    logger.info(f"Ballot {ballot.id} {status.value} for {role} {member.id} on poll {poll.id} (rev {revision})")
    return SubmissionOutcome(status, ballot, derived_points(ballot, poll))


# =============================================================================
# Credential pre-check
# =============================================================================

@dataclass
class CredentialCheck:
    poll: Poll
    role: str
    member: Any
    entries: List[PollEntry]
    existing_ballot: Optional[Ballot] = None

    @property
    def already_voted(self) -> bool:
        return self.existing_ballot is not None

    @property
    def can_edit(self) -> bool:
        return bool(self.poll.allow_vote_editing)

    def available_entries(self) -> List[PollEntry]:
        """Entries the member may pick; own teams drop out unless self-votes are allowed."""
        if self.poll.allow_self_vote:
            return list(self.entries)
        assigned = getattr(self.member, "assigned_team_id", None)
        email = normalize_email(self.member.email)
        return [
            e for e in self.entries
            if e.team_id != assigned
            and (email is None or normalize_email(e.team.owner_identity) != email)
        ]

    def to_dict(self) -> Dict[str, Any]:
        assigned_team = getattr(self.member, "assigned_team", None)
        data = {
            "valid": True,
            "role": self.role,
            "already_voted": self.already_voted,
            "can_edit": self.can_edit,
            "poll": {
                "id": self.poll.id,
                "name": self.poll.name,
                "voting_mode": self.poll.voting_mode,
                "voting_permissions": self.poll.voting_permissions,
                "voting_sequence": self.poll.voting_sequence,
                "require_team_name_gate": self.poll.require_team_name_gate,
                "allow_self_vote": self.poll.allow_self_vote,
                "allow_vote_editing": self.poll.allow_vote_editing,
                "max_ranked_positions": self.poll.max_ranked_positions,
                "rank_points_config": self.poll.rank_points_config,
            },
            "voter_team": (
                {"id": assigned_team.id, "team_name": assigned_team.team_name} if assigned_team else None
            ),
            "available_teams": [e.team.to_dict() for e in self.available_entries()],
        }
        if self.existing_ballot is not None:
            data["existing_ballot"] = self.existing_ballot.to_dict()
        return data


async def validate_credentials(
    db: AsyncSession,
    poll_id: int,
    role: str,
    identity: str,
    now: Optional[datetime] = None,
    voter_phase_complete: Optional[bool] = None,
) -> CredentialCheck:
    """
    Run submit_ballot's window, role, sequence and identity checks without
    casting a ballot, and describe what the member may vote on.

    The team-name gate is reported, not enforced: the team name is only
    asked for with the ballot itself.
    """
    now = now or utcnow()
    role = VoteType(role).value

    poll, _ = await _open_poll(db, poll_id, role, now, voter_phase_complete)
    member = await _resolve_member(db, poll, role, identity)

    existing = None
    if _is_consumed(member):
        existing = await _existing_ballot(db, poll.id, role, member)

    check = CredentialCheck(
        poll=poll,
        role=role,
        member=member,
        entries=await _poll_entries(db, poll.id),
        existing_ballot=existing,
    )
    logger.info(f"Validated {role} {member.id} on poll {poll.id} (already voted: {check.already_voted})")
    return check
