"""
Tally engine: scoring per mode, rank curves, ordering and quorum.
"""
import random
import pytest
from decimal import Decimal

from pollvault.exceptions import InvalidConfigurationError
from pollvault.orm.ballot import Ballot
from pollvault.services import tally_service
from pollvault.services.tally_service import (
    RankPointsCurve, resolve_rank_points_config, results_payload, tally_ballots,
)
from pollvault.services.vote_service import submit_ballot
from tests.factories import NOW, issue_token, make_hackathon, make_poll

ENTRIES = [(1, "Alpha"), (2, "Beta"), (3, "Gamma")]


def single(team_id, vote_type="voter"):
    return Ballot(vote_type=vote_type, voting_mode="single", team_id_target=team_id)


def multiple(team_ids, vote_type="voter"):
    return Ballot(vote_type=vote_type, voting_mode="multiple", teams=list(team_ids))


def ranked(order, vote_type="voter"):
    return Ballot(
        vote_type=vote_type,
        voting_mode="ranked",
        rankings=[{"team_id": t, "rank": r} for r, t in enumerate(order, start=1)],
    )


def scores(result):
    return {row.team_id: row.total_score for row in result.rows}


# =============================================================================
# Test Class 1: Scoring
# =============================================================================

class TestSingleAndMultiple:

    def test_single_choice_counts(self):
        result = tally_ballots(ENTRIES, [single(1), single(1), single(2)], "single", 1.0, 1.0)

        assert [r.team_id for r in result.rows] == [1, 2, 3]
        assert scores(result) == {1: Decimal(2), 2: Decimal(1), 3: Decimal(0)}
        assert result.rows[0].vote_count == 2
        assert result.ballot_count == 3

    def test_role_weights_apply(self):
        ballots = [single(1), single(2, "judge")]
        result = tally_ballots(ENTRIES, ballots, "single", 1.0, 3.0)

        beta, alpha = result.rows[0], result.rows[1]
        assert beta.team_id == 2
        assert beta.judge_score == Decimal(3)
        assert beta.judge_vote_count == 1
        assert alpha.voter_score == Decimal(1)
        assert alpha.voter_vote_count == 1

    def test_total_is_voter_plus_judge(self):
        ballots = [single(1), single(1, "judge")]
        row = tally_ballots(ENTRIES, ballots, "single", 1.5, 2.5).rows[0]
        assert row.total_score == row.voter_score + row.judge_score == Decimal("4.0")

    def test_multiple_adds_weight_to_each_target(self):
        ballots = [multiple([1, 2]), multiple([2, 3]), multiple([2])]
        result = tally_ballots(ENTRIES, ballots, "multiple", 1.0, 1.0)

        assert scores(result) == {1: Decimal(1), 2: Decimal(3), 3: Decimal(1)}
        assert result.rows[0].team_id == 2

    def test_zero_weight_role_counts_votes_not_points(self):
        result = tally_ballots(ENTRIES, [single(3, "judge")], "single", 1.0, 0.0)
        gamma = next(r for r in result.rows if r.team_id == 3)
        assert gamma.total_score == Decimal(0)
        assert gamma.judge_vote_count == 1

    def test_unknown_team_is_ignored(self):
        result = tally_ballots(ENTRIES, [single(99)], "single", 1.0, 1.0)
        assert all(r.total_score == 0 for r in result.rows)


class TestRanked:

    def test_judge_weighted_points_table(self):
        curve = RankPointsCurve.from_config(resolve_rank_points_config("ranked", None, [3, 2, 1]))
        result = tally_ballots(ENTRIES, [ranked([1, 2, 3], "judge")], "ranked", 1.0, 2.0, curve=curve)

        assert scores(result) == {1: Decimal(6), 2: Decimal(4), 3: Decimal(2)}
        assert all(r.voter_score == 0 for r in result.rows)

    def test_rank_histogram(self):
        ballots = [ranked([1, 2, 3]), ranked([2, 1, 3]), ranked([1, 3])]
        result = tally_ballots(ENTRIES, ballots, "ranked", 1.0, 1.0)
        rows = {r.team_id: r for r in result.rows}

        assert rows[1].rank_histogram == {1: 2, 2: 1}
        assert rows[3].rank_histogram == {3: 2, 2: 1}

    def test_histogram_absent_outside_ranked(self):
        result = tally_ballots(ENTRIES, [single(1)], "single", 1.0, 1.0)
        assert result.rows[0].rank_histogram is None
        assert "rank_histogram" not in result.rows[0].to_dict()

    def test_ballot_length_curve(self):
        curve = RankPointsCurve.from_config({"kind": "linear", "basis": "ballot_length"})
        result = tally_ballots(ENTRIES, [ranked([3, 1])], "ranked", 1.0, 1.0, curve=curve)
        assert scores(result) == {1: Decimal(1), 2: Decimal(0), 3: Decimal(2)}


# =============================================================================
# Test Class 2: Rank Curve
# =============================================================================

class TestRankPointsCurve:

    def test_linear_on_max_positions(self):
        curve = RankPointsCurve.from_config({"kind": "linear", "basis": "max_positions"}, max_positions=5)
        assert curve.points_for(1, ballot_length=2) == Decimal(5)
        assert curve.points_for(5, ballot_length=2) == Decimal(1)

    def test_points_never_negative(self):
        curve = RankPointsCurve.from_config({"kind": "linear", "basis": "ballot_length"})
        assert curve.points_for(4, ballot_length=2) == Decimal(0)

    def test_table_unlisted_rank_scores_zero(self):
        curve = RankPointsCurve.from_config({"kind": "table", "points": {"1": 10, "2": 5}})
        assert curve.points_for(1, 3) == Decimal(10)
        assert curve.points_for(3, 3) == Decimal(0)

    def test_resolution_defaults(self):
        assert resolve_rank_points_config("ranked", 4) == {"kind": "linear", "basis": "max_positions"}
        assert resolve_rank_points_config("ranked", None) == {"kind": "linear", "basis": "ballot_length"}
        assert resolve_rank_points_config("single", None) is None

    def test_resolution_accepts_mapping_and_list(self):
        assert resolve_rank_points_config("ranked", None, {"1": 5, "2": 2.5}) == {
            "kind": "table", "points": {"1": 5, "2": 2.5},
        }
        assert resolve_rank_points_config("ranked", None, [3, 2, 1]) == {
            "kind": "table", "points": {"1": 3, "2": 2, "3": 1},
        }

    @pytest.mark.parametrize("explicit", [
        [3, -1],
        {"0": 3},
        {"kind": "exotic"},
        {"kind": "linear", "basis": "max_positions"},
        "3,2,1",
    ])
    def test_resolution_rejects_bad_curves(self, explicit):
        with pytest.raises(InvalidConfigurationError):
            resolve_rank_points_config("ranked", None, explicit)

    def test_points_on_non_ranked_poll_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            resolve_rank_points_config("multiple", None, [3, 2, 1])


# =============================================================================
# Test Class 3: Determinism
# =============================================================================

class TestDeterminism:

    def test_ballot_order_does_not_matter(self):
        ballots = [ranked([1, 2, 3]), ranked([2, 3, 1], "judge"), ranked([3, 1]), ranked([2])]
        baseline = results_payload(tally_ballots(ENTRIES, ballots, "ranked", 1.0, 2.0))

        rng = random.Random(7)
        for _ in range(10):
            shuffled = list(ballots)
            rng.shuffle(shuffled)
            assert results_payload(tally_ballots(ENTRIES, shuffled, "ranked", 1.0, 2.0)) == baseline

    def test_ties_keep_entry_order(self):
        result = tally_ballots(ENTRIES, [single(3), single(2)], "single", 1.0, 1.0)
        assert [r.team_id for r in result.rows] == [2, 3, 1]

    def test_scores_serialize_without_exponent(self):
        result = tally_ballots(ENTRIES, [single(1)] * 100, "single", 1.0, 1.0)
        assert result.rows[0].to_dict()["total_score"] == "100"


# =============================================================================
# Test Class 4: Database Tally and Quorum
# =============================================================================

class TestComputeTally:

    @pytest.mark.asyncio
    async def test_tally_from_stored_ballots(self, db):
        hackathon = await make_hackathon(db)
        poll, teams = await make_poll(db, hackathon)
        for team in (teams[1], teams[1], teams[0]):
            token, _ = await issue_token(db, poll)
            await submit_ballot(db, poll.id, "voter", token, {"mode": "single", "team_id": team.id}, now=NOW)

        result = await tally_service.compute_tally(db, poll.id)

        assert [r.team_name for r in result.rows] == ["Beta", "Alpha", "Gamma"]
        assert result.rows[0].total_score == Decimal(2)
        assert result.turnout.voters.registered == 3
        assert result.below_quorum is False

    @pytest.mark.asyncio
    async def test_below_quorum_is_flagged_not_raised(self, db):
        hackathon = await make_hackathon(db)
        poll, teams = await make_poll(db, hackathon, min_voter_participation=50)
        token, _ = await issue_token(db, poll)
        for _ in range(3):
            await issue_token(db, poll)
        await submit_ballot(db, poll.id, "voter", token, {"mode": "single", "team_id": teams[0].id}, now=NOW)

        result = await tally_service.compute_tally(db, poll.id)

        assert result.below_quorum is True
        warning = result.warnings[0]
        assert warning.code == "QUORUM_NOT_MET"
        assert warning.role == "voter"
        assert warning.turnout_percent == Decimal("25.00")
        assert result.rows[0].total_score == Decimal(1)

    @pytest.mark.asyncio
    async def test_quorum_compares_exact_turnout_not_rounded(self, db):
        hackathon = await make_hackathon(db)
        poll, teams = await make_poll(db, hackathon, min_voter_participation=66.67)
        tokens = [(await issue_token(db, poll))[0] for _ in range(3)]
        for token in tokens[:2]:
            await submit_ballot(db, poll.id, "voter", token, {"mode": "single", "team_id": teams[0].id}, now=NOW)

        result = await tally_service.compute_tally(db, poll.id)

        # 2/3 is 66.666...%, shown as 66.67
        assert result.turnout.voters.percent == Decimal("66.67")
        assert result.below_quorum is True
        assert result.warnings[0].turnout_percent == Decimal("66.67")

    @pytest.mark.asyncio
    async def test_turnout_exactly_at_threshold_meets_quorum(self, db):
        hackathon = await make_hackathon(db)
        poll, teams = await make_poll(db, hackathon, min_voter_participation=50)
        tokens = [(await issue_token(db, poll))[0] for _ in range(4)]
        for token in tokens[:2]:
            await submit_ballot(db, poll.id, "voter", token, {"mode": "single", "team_id": teams[0].id}, now=NOW)

        result = await tally_service.compute_tally(db, poll.id)
        assert result.below_quorum is False

    @pytest.mark.asyncio
    async def test_empty_roll_is_zero_turnout(self, db):
        hackathon = await make_hackathon(db)
        poll, _ = await make_poll(
            db, hackathon, voting_permissions="voters_and_judges", min_judge_participation=1
        )
        result = await tally_service.compute_tally(db, poll.id)

        assert [w.role for w in result.warnings] == ["judge"]
        assert result.warnings[0].turnout_percent == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_threshold_for_disallowed_role_is_ignored(self, db):
        hackathon = await make_hackathon(db)
        poll, _ = await make_poll(db, hackathon, min_judge_participation=50)
        result = await tally_service.compute_tally(db, poll.id)
        assert result.below_quorum is False

    @pytest.mark.asyncio
    async def test_event_results_cover_every_poll(self, db):
        hackathon = await make_hackathon(db)
        first, _ = await make_poll(db, hackathon, name="Main")
        second, _ = await make_poll(db, hackathon, name="Design")

        payload = await tally_service.compute_event_results(db, hackathon.id)

        assert [p["poll_id"] for p in payload["polls"]] == [first.id, second.id]
        assert all(len(p["rows"]) == 3 for p in payload["polls"])
