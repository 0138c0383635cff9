"""
Pure ballot checks: shape rules per mode and the ordered preconditions.
No database involved.
"""
import pytest

from pollvault.exceptions import (
    InvalidBallotShapeError, OutOfWindowError, RoleNotAllowedError,
    SelfVoteForbiddenError, SequenceViolationError,
)
from pollvault.orm.hackathon import Hackathon, HackathonStatus
from pollvault.orm.poll import Poll
from pollvault.schemas.ballots import MultipleBallot, RankedBallot, RankedChoice, SingleBallot
from pollvault.services.ballot_validator import ShapeContext, validate_shape
from pollvault.services.vote_service import (
    check_role, check_self_vote, check_sequence, check_window, parse_payload,
)
from tests.factories import HOUR, NOW

TEAMS = [10, 20, 30, 40]


def ctx(mode, vote_type="voter", max_ranked_positions=None):
    return ShapeContext(mode, TEAMS, vote_type, max_ranked_positions)


def ranked(*choices):
    return RankedBallot(rankings=[RankedChoice(team_id=t, rank=r, reason=why) for t, r, why in choices])


def rule_of(exc_info):
    return exc_info.value.details["rule"]


def make_poll(**overrides):
    values = dict(
        id=1, hackathon_id=1, start_time=NOW - HOUR, end_time=NOW + HOUR,
        voting_mode="single", voting_permissions="voters_only", voting_sequence="simultaneous",
        allow_self_vote=False, is_superseded=False,
    )
    values.update(overrides)
    return Poll(**values)


def make_hackathon(**overrides):
    values = dict(id=1, name="Hack", status=HackathonStatus.LIVE.value, voting_closes_at=None)
    values.update(overrides)
    return Hackathon(**values)


# =============================================================================
# Test Class 1: Shape Rules
# =============================================================================

class TestShapeRules:

    def test_mode_mismatch_comes_first(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(SingleBallot(team_id=999), ctx("ranked"))
        assert rule_of(exc_info) == "mode_mismatch"
        assert exc_info.value.details["expected"] == "ranked"

    def test_single_unknown_team(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(SingleBallot(team_id=99), ctx("single"))
        assert rule_of(exc_info) == "unknown_team"

    def test_single_normalized(self):
        assert validate_shape(SingleBallot(team_id=20, reason="ok"), ctx("single")) == {
            "team_id_target": 20, "reason": "ok",
        }

    def test_multiple_empty(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(MultipleBallot(team_ids=[]), ctx("multiple"))
        assert rule_of(exc_info) == "empty"

    def test_multiple_duplicates(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(MultipleBallot(team_ids=[10, 10]), ctx("multiple"))
        assert rule_of(exc_info) == "duplicate_team"

    def test_multiple_keeps_order(self):
        fields = validate_shape(MultipleBallot(team_ids=[30, 10]), ctx("multiple"))
        assert fields["teams"] == [30, 10]

    @pytest.mark.parametrize("choices, rule", [
        ((), "empty"),
        (((10, 1, None), (10, 2, None)), "duplicate_team"),
        (((10, 0, None),), "rank_not_positive"),
        (((10, 1, None), (20, 1, None)), "duplicate_rank"),
        (((99, 1, None),), "unknown_team"),
    ])
    def test_ranked_rejections(self, choices, rule):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(ranked(*choices), ctx("ranked"))
        assert rule_of(exc_info) == rule

    def test_ranked_too_many(self):
        ballot = ranked((10, 1, None), (20, 2, None), (30, 3, None))
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(ballot, ctx("ranked", max_ranked_positions=2))
        assert rule_of(exc_info) == "too_many"
        assert exc_info.value.details["limit"] == 2

    def test_ranked_rank_beyond_limit(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(ranked((10, 3, None)), ctx("ranked", max_ranked_positions=2))
        assert rule_of(exc_info) == "rank_out_of_range"

    def test_rank_capped_at_entry_count_without_limit(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(ranked((10, 5, None)), ctx("ranked"))
        assert rule_of(exc_info) == "rank_out_of_range"
        assert exc_info.value.details["limit"] == len(TEAMS)

    def test_ranked_gaps_are_allowed(self):
        fields = validate_shape(ranked((30, 4, None), (10, 1, None)), ctx("ranked"))
        assert [r["team_id"] for r in fields["rankings"]] == [10, 30]

    def test_judge_reason_required_when_ranked(self):
        ballot = ranked((10, 1, "great"), (20, 2, ""))
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            validate_shape(ballot, ctx("ranked", vote_type="judge"))
        assert rule_of(exc_info) == "reason_required"
        assert exc_info.value.details["team_ids"] == [20]

    def test_voter_needs_no_reason(self):
        fields = validate_shape(ranked((10, 1, None)), ctx("ranked"))
        assert fields["rankings"] == [{"team_id": 10, "rank": 1, "reason": None}]

    def test_judge_single_ballot_needs_no_reason(self):
        fields = validate_shape(SingleBallot(team_id=10), ctx("single", vote_type="judge"))
        assert fields["team_id_target"] == 10


class TestParsePayload:

    def test_dict_is_parsed_by_mode(self):
        ballot = parse_payload({"mode": "multiple", "team_ids": [1, 2]})
        assert isinstance(ballot, MultipleBallot)

    def test_malformed(self):
        with pytest.raises(InvalidBallotShapeError) as exc_info:
            parse_payload({"mode": "ranked", "rankings": [{"team_id": "x"}]})
        assert rule_of(exc_info) == "malformed"

    def test_unknown_mode(self):
        with pytest.raises(InvalidBallotShapeError):
            parse_payload({"mode": "approval", "team_ids": [1]})

    def test_model_passes_through(self):
        ballot = SingleBallot(team_id=3)
        assert parse_payload(ballot) is ballot


# =============================================================================
# Test Class 2: Preconditions
# =============================================================================

class TestCheckWindow:

    def test_open(self):
        check_window(make_poll(), make_hackathon(), NOW)

    def test_boundaries_are_inclusive(self):
        poll = make_poll()
        check_window(poll, make_hackathon(), poll.start_time)
        check_window(poll, make_hackathon(), poll.end_time)

    @pytest.mark.parametrize("poll_kw, hackathon_kw, now, reason", [
        ({"is_superseded": True}, {}, NOW, "superseded"),
        ({}, {"status": "closed"}, NOW, "event_closed"),
        ({}, {"status": "finalized"}, NOW, "event_closed"),
        ({}, {"voting_closes_at": NOW}, NOW, "voting_closed"),
        ({}, {}, NOW - 2 * HOUR, "not_started"),
        ({}, {}, NOW + 2 * HOUR, "ended"),
    ])
    def test_rejections(self, poll_kw, hackathon_kw, now, reason):
        with pytest.raises(OutOfWindowError) as exc_info:
            check_window(make_poll(**poll_kw), make_hackathon(**hackathon_kw), now)
        assert exc_info.value.details["reason"] == reason

    def test_draft_event_is_open(self):
        check_window(make_poll(), make_hackathon(status="draft"), NOW)


class TestRoleAndSequence:

    @pytest.mark.parametrize("permissions, role, allowed", [
        ("voters_only", "voter", True),
        ("voters_only", "judge", False),
        ("judges_only", "voter", False),
        ("judges_only", "judge", True),
        ("voters_and_judges", "voter", True),
        ("voters_and_judges", "judge", True),
    ])
    def test_roles(self, permissions, role, allowed):
        poll = make_poll(voting_permissions=permissions)
        if allowed:
            check_role(poll, role)
        else:
            with pytest.raises(RoleNotAllowedError):
                check_role(poll, role)

    def test_voters_first_blocks_judges_until_phase_complete(self):
        poll = make_poll(voting_sequence="voters_first")
        with pytest.raises(SequenceViolationError):
            check_sequence(poll, "judge", False)
        check_sequence(poll, "judge", True)
        check_sequence(poll, "voter", False)

    def test_simultaneous_never_blocks(self):
        check_sequence(make_poll(), "judge", False)


class TestSelfVote:

    def test_assigned_team(self):
        with pytest.raises(SelfVoteForbiddenError) as exc_info:
            check_self_vote(make_poll(), [10, 20], {}, 20, None)
        assert exc_info.value.details["team_id"] == 20

    def test_owner_email_case_insensitive(self):
        owners = {10: "Owner@Example.com"}
        with pytest.raises(SelfVoteForbiddenError):
            check_self_vote(make_poll(), [10], owners, None, " owner@example.COM ")

    def test_other_teams_pass(self):
        check_self_vote(make_poll(), [10], {20: "owner@example.com"}, 30, "owner@example.com")

    def test_no_email_never_matches_unowned_team(self):
        check_self_vote(make_poll(), [10], {10: None}, None, None)

    def test_allowed(self):
        check_self_vote(make_poll(allow_self_vote=True), [20], {}, 20, None)
