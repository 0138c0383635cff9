"""
Electorate Registry.

Voters are identified by bearer tokens. Only the SHA-256 of a token is
stored; the plain token is handed back once, at issue. Judges are
identified by lower-cased email.
"""
import hashlib
import logging
import secrets
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.exceptions import InvalidConfigurationError, NotFoundError
from pollvault.orm.ballot import Ballot
from pollvault.orm.electorate import DeliveryStatus, PollJudge, VoterToken
from pollvault.orm.poll import Poll, PollEntry
from pollvault.services import notification_service

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24


def hash_token(token: str) -> str:
    return hashlib.sha256(token.strip().encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email else None


def turnout_percent(consumed: int, registered: int) -> Decimal:
    """Turnout in percent, two decimals. An empty roll has 0% turnout."""
    if registered <= 0:
        return Decimal("0.00")
    return (Decimal(consumed) * 100 / Decimal(registered)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


@dataclass
class RoleTurnout:
    registered: int
    consumed: int

    @property
    def percent(self) -> Decimal:
        return turnout_percent(self.consumed, self.registered)

    def is_below(self, threshold: Decimal) -> bool:
        """Exact comparison against a percentage; the rounded percent is for display."""
        if self.registered <= 0:
            return threshold > 0
        return Decimal(self.consumed) * 100 < threshold * self.registered

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registered": self.registered,
            "consumed": self.consumed,
            "turnout_percent": str(self.percent),
        }


@dataclass
class Turnout:
    voters: RoleTurnout
    judges: RoleTurnout

    def for_role(self, vote_type: str) -> RoleTurnout:
        return self.judges if vote_type == "judge" else self.voters

    def to_dict(self) -> Dict[str, Any]:
        return {"voters": self.voters.to_dict(), "judges": self.judges.to_dict()}


@dataclass
class IssuedToken:
    """A freshly issued voter token. `token` is never retrievable again."""
    voter_token: VoterToken
    token: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.voter_token.to_dict()
        data["token"] = self.token
        return data


async def _get_poll(db: AsyncSession, poll_id: int) -> Poll:
    poll = await db.get(Poll, poll_id)
    if poll is None:
        raise NotFoundError(f"Poll {poll_id} not found")
    return poll


async def _entry_team_ids(db: AsyncSession, poll_id: int) -> List[int]:
    result = await db.execute(
        select(PollEntry.team_id).where(PollEntry.poll_id == poll_id).order_by(PollEntry.id)
    )
    return list(result.scalars().all())


# =============================================================================
# Voters
# =============================================================================

async def issue_voter_tokens(
    db: AsyncSession,
    poll_id: int,
    voters: Sequence[Dict[str, Any]],
) -> List[IssuedToken]:
    """
    Issue one token per voter entry.

    Each entry may carry `email` and `assigned_team_id`; an assigned team
    must be an entrant of the poll.
    """
    await _get_poll(db, poll_id)
    team_ids = set(await _entry_team_ids(db, poll_id))

    issued = []
    for voter in voters:
        assigned_team_id = voter.get("assigned_team_id")
        if assigned_team_id is not None and assigned_team_id not in team_ids:
            raise InvalidConfigurationError(
                f"Team {assigned_team_id} is not an entrant of poll {poll_id}",
                {"poll_id": poll_id, "team_id": assigned_team_id},
            )
        token = generate_token()
        record = VoterToken(
            poll_id=poll_id,
            email=normalize_email(voter.get("email")),
            token_hash=hash_token(token),
            assigned_team_id=assigned_team_id,
            used=False,
            ballot_version=0,
            delivery_status=DeliveryStatus.PENDING.value,
        )
        db.add(record)
        issued.append(IssuedToken(voter_token=record, token=token))

    await db.flush()
    logger.info(f"Issued {len(issued)} voter tokens for poll {poll_id}")
    notification_service.dispatcher.notify(
        notification_service.TOKENS_ISSUED,
        {"poll_id": poll_id, "voter_token_ids": [i.voter_token.id for i in issued]},
    )
    return issued


async def get_voter_token_by_token(db: AsyncSession, poll_id: int, token: str) -> Optional[VoterToken]:
    result = await db.execute(
        select(VoterToken).where(
            VoterToken.poll_id == poll_id,
            VoterToken.token_hash == hash_token(token),
        )
    )
    return result.scalar_one_or_none()


async def list_voter_tokens(db: AsyncSession, poll_id: int) -> List[VoterToken]:
    result = await db.execute(
        select(VoterToken).where(VoterToken.poll_id == poll_id).order_by(VoterToken.id)
    )
    return list(result.scalars().all())


async def reassign_voter_token(
    db: AsyncSession,
    voter_token_id: int,
    assigned_team_id: Optional[int],
) -> VoterToken:
    record = await db.get(VoterToken, voter_token_id)
    if record is None:
        raise NotFoundError(f"Voter token {voter_token_id} not found")
    if assigned_team_id is not None and assigned_team_id not in await _entry_team_ids(db, record.poll_id):
        raise InvalidConfigurationError(
            f"Team {assigned_team_id} is not an entrant of poll {record.poll_id}",
            {"poll_id": record.poll_id, "team_id": assigned_team_id},
        )
    record.assigned_team_id = assigned_team_id
    await db.flush()
    # assigned_team is a joined relationship; reload it with the new id
    await db.refresh(record, attribute_names=["assigned_team"])
    return record


# =============================================================================
# Judges
# =============================================================================

async def get_judge(db: AsyncSession, poll_id: int, email: str) -> Optional[PollJudge]:
    result = await db.execute(
        select(PollJudge).where(
            PollJudge.poll_id == poll_id,
            func.lower(PollJudge.email) == normalize_email(email),
        )
    )
    return result.scalar_one_or_none()


async def add_judge(
    db: AsyncSession,
    poll_id: int,
    email: str,
    name: Optional[str] = None,
) -> Tuple[PollJudge, bool]:
    """Upsert a judge by email. Returns (judge, created)."""
    await _get_poll(db, poll_id)
    if not email or not email.strip():
        raise InvalidConfigurationError("Judge email is required")

    judge = await get_judge(db, poll_id, email)
    if judge is not None:
        if name is not None:
            judge.name = name
        await db.flush()
        return judge, False

    judge = PollJudge(
        poll_id=poll_id,
        email=normalize_email(email),
        name=name,
        has_voted=False,
        ballot_version=0,
        delivery_status=DeliveryStatus.PENDING.value,
    )
    db.add(judge)
    await db.flush()
    logger.info(f"Added judge {judge.email} to poll {poll_id}")
    notification_service.dispatcher.notify(
        notification_service.JUDGE_ADDED,
        {"poll_id": poll_id, "judge_id": judge.id, "email": judge.email},
    )
    return judge, True


async def remove_judge(db: AsyncSession, poll_id: int, email: str) -> None:
    """
    Remove a judge from the roll. A judge who already voted cannot be
    removed: their ballot is part of the tally.
    """
    judge = await get_judge(db, poll_id, email)
    if judge is None:
        raise NotFoundError(f"Judge {email} not found on poll {poll_id}")

    ballot_count = await db.scalar(
        select(func.count(Ballot.id)).where(Ballot.judge_id == judge.id)
    )
    if ballot_count:
        raise InvalidConfigurationError(
            f"Judge {judge.email} already voted on poll {poll_id}",
            {"poll_id": poll_id, "judge_id": judge.id},
        )

    await db.delete(judge)
    await db.flush()
    logger.info(f"Removed judge {judge.email} from poll {poll_id}")


async def list_judges(db: AsyncSession, poll_id: int) -> List[PollJudge]:
    result = await db.execute(
        select(PollJudge).where(PollJudge.poll_id == poll_id).order_by(PollJudge.id)
    )
    return list(result.scalars().all())


# =============================================================================
# Delivery and turnout
# =============================================================================

async def set_delivery_status(
    db: AsyncSession,
    member_type: str,
    member_id: int,
    delivery_status: DeliveryStatus,
):
    """Record the outcome reported by the external mailer."""
    model = PollJudge if member_type == "judge" else VoterToken
    record = await db.get(model, member_id)
    if record is None:
        raise NotFoundError(f"{model.__name__} {member_id} not found")
    record.delivery_status = DeliveryStatus(delivery_status).value
    await db.flush()
    return record


async def get_turnout(db: AsyncSession, poll_id: int) -> Turnout:
    voters_registered = await db.scalar(
        select(func.count(VoterToken.id)).where(VoterToken.poll_id == poll_id)
    )
    voters_consumed = await db.scalar(
        select(func.count(VoterToken.id)).where(
            VoterToken.poll_id == poll_id, VoterToken.used == True  # noqa: E712
        )
    )
    judges_registered = await db.scalar(
        select(func.count(PollJudge.id)).where(PollJudge.poll_id == poll_id)
    )
    judges_consumed = await db.scalar(
        select(func.count(PollJudge.id)).where(
            PollJudge.poll_id == poll_id, PollJudge.has_voted == True  # noqa: E712
        )
    )
    return Turnout(
        voters=RoleTurnout(registered=voters_registered or 0, consumed=voters_consumed or 0),
        judges=RoleTurnout(registered=judges_registered or 0, consumed=judges_consumed or 0),
    )
