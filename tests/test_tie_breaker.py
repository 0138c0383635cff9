"""
Tie detection on tallies and tie-breaker poll creation.
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from pollvault.exceptions import InvalidConfigurationError, OutOfWindowError, TieBreakerConflictError
from pollvault.orm.electorate import VoterToken
from pollvault.orm.hackathon import HackathonStatus
from pollvault.orm.integrity import CommitmentType, IntegrityCommitment
from pollvault.services import integrity_service, poll_service
from pollvault.services.tally_service import TallyResult, TallyRow
from pollvault.services.tie_breaker_service import create_tie_breaker, detect_ties
from pollvault.services.vote_service import submit_ballot
from tests.factories import HOUR, NOW, issue_token, make_hackathon, make_poll


def tally_of(*scores):
    rows = [TallyRow(team_id=i, team_name=f"T{i}", voter_score=Decimal(s)) for i, s in enumerate(scores, start=1)]
    return TallyResult(poll_id=1, voting_mode="single", rows=rows)


# =============================================================================
# Test Class 1: Detection
# =============================================================================

class TestDetectTies:

    def test_tie_across_cutoff(self):
        groups = detect_ties(tally_of(5, 5, 3), cutoff=1)
        assert len(groups) == 1
        assert groups[0].team_ids == [1, 2]
        assert groups[0].positions == [1, 2]
        assert groups[0].straddles_cutoff is True
        assert groups[0].to_dict()["total_score"] == "5"

    def test_tie_below_cutoff_is_ignored(self):
        assert detect_ties(tally_of(5, 3, 3), cutoff=1) == []

    def test_tie_reaching_cutoff(self):
        groups = detect_ties(tally_of(5, 3, 3), cutoff=2)
        assert [g.team_ids for g in groups] == [[2, 3]]
        assert groups[0].straddles_cutoff is True

    def test_tie_inside_cutoff_does_not_straddle(self):
        groups = detect_ties(tally_of(4, 4, 4), cutoff=3)
        assert groups[0].team_ids == [1, 2, 3]
        assert groups[0].straddles_cutoff is False

    def test_no_ties(self):
        assert detect_ties(tally_of(3, 2, 1), cutoff=3) == []


# =============================================================================
# Test Class 2: Creation
# =============================================================================

class TestCreateTieBreaker:

    @pytest.mark.asyncio
    async def test_inherits_rules_and_teams(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(
            db, hackathon, voting_mode="ranked", voting_permissions="voters_and_judges",
            judge_weight=2.0, rank_points=[3, 2, 1], allow_vote_editing=True,
        )
        await issue_token(db, parent)

        tie_breaker = await create_tie_breaker(
            db, parent.id, [teams[2].id, teams[0].id, teams[2].id], "Runoff", NOW, NOW + HOUR,
        )

        assert tie_breaker.is_tie_breaker is True
        assert tie_breaker.tie_breaker_of == parent.id
        assert tie_breaker.voting_mode == "ranked"
        assert tie_breaker.judge_weight == 2.0
        assert tie_breaker.rank_points_config == parent.rank_points_config
        assert tie_breaker.allow_vote_editing is True

        entries = await poll_service.list_entries(db, tie_breaker.id)
        assert [e.team_id for e in entries] == [teams[0].id, teams[2].id]

        voters = await db.scalar(select(func.count(VoterToken.id)).where(VoterToken.poll_id == tie_breaker.id))
        assert voters == 0

    @pytest.mark.asyncio
    async def test_rules_commitment_covers_tie_breaker(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)

        tie_breaker = await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Runoff", NOW, NOW + HOUR)

        rows = await db.scalar(select(func.count(IntegrityCommitment.id)).where(
            IntegrityCommitment.hackathon_id == hackathon.id,
            IntegrityCommitment.commitment_type == CommitmentType.RULES.value,
        ))
        assert rows == 1
        rules = await integrity_service.get_commitment_for(db, hackathon.id, CommitmentType.RULES)
        assert [p["poll_id"] for p in rules.commitment_data["polls"]] == [parent.id, tie_breaker.id]

    @pytest.mark.asyncio
    async def test_needs_two_teams(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)

        with pytest.raises(InvalidConfigurationError):
            await create_tie_breaker(db, parent.id, [teams[0].id, teams[0].id], "Runoff", NOW, NOW + HOUR)

    @pytest.mark.asyncio
    async def test_rejects_teams_outside_parent(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)
        _, other_teams = await make_poll(db, hackathon, name="Other", team_names=("Delta",))

        with pytest.raises(InvalidConfigurationError) as exc_info:
            await create_tie_breaker(db, parent.id, [teams[0].id, other_teams[0].id], "Runoff", NOW, NOW + HOUR)
        assert exc_info.value.details["team_ids"] == [other_teams[0].id]

    @pytest.mark.asyncio
    async def test_overlap_conflicts(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)
        first = await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Runoff", NOW, NOW + HOUR)

        with pytest.raises(TieBreakerConflictError) as exc_info:
            await create_tie_breaker(db, parent.id, [teams[1].id, teams[2].id], "Runoff 2", NOW, NOW + HOUR)
        assert exc_info.value.details["tie_breaker_id"] == first.id

    @pytest.mark.asyncio
    async def test_supersede_closes_old_tie_breaker(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)
        first = await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Runoff", NOW - HOUR, NOW + HOUR)
        token, _ = await issue_token(db, first)

        second = await create_tie_breaker(
            db, parent.id, [teams[0].id, teams[1].id, teams[2].id], "Runoff 2", NOW - HOUR, NOW + HOUR,
            supersede=True,
        )

        assert first.is_superseded is True
        assert second.is_superseded is False
        with pytest.raises(OutOfWindowError) as exc_info:
            await submit_ballot(db, first.id, "voter", token, {"mode": "single", "team_id": teams[0].id}, now=NOW)
        assert exc_info.value.details["reason"] == "superseded"

    @pytest.mark.asyncio
    async def test_disjoint_tie_breakers_coexist(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon, team_names=("A", "B", "C", "D"))

        await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Top", NOW, NOW + HOUR)
        await create_tie_breaker(db, parent.id, [teams[2].id, teams[3].id], "Bottom", NOW, NOW + HOUR)

    @pytest.mark.asyncio
    async def test_entrants_are_fixed(self, db):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)
        tie_breaker = await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Runoff", NOW, NOW + HOUR)

        with pytest.raises(InvalidConfigurationError):
            await poll_service.add_team(db, tie_breaker.id, {"team_name": "Late"})
        with pytest.raises(InvalidConfigurationError):
            await poll_service.duplicate_team(db, tie_breaker.id, teams[2].id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [HackathonStatus.CLOSED, HackathonStatus.FINALIZED])
    async def test_rejected_once_event_stops_accepting_ballots(self, db, status):
        hackathon = await make_hackathon(db)
        parent, teams = await make_poll(db, hackathon)
        rules = await integrity_service.get_commitment_for(db, hackathon.id, CommitmentType.RULES)
        await integrity_service.attach_external_reference(db, rules.id, "0xfeed", 7)
        committed_hash = rules.commitment_hash
        hackathon.status = status.value
        await db.flush()

        with pytest.raises(InvalidConfigurationError) as exc_info:
            await create_tie_breaker(db, parent.id, [teams[0].id, teams[1].id], "Runoff", NOW, NOW + HOUR)

        assert exc_info.value.details["status"] == status.value
        assert rules.commitment_hash == committed_hash
        assert rules.tx_ref == "0xfeed"
