"""
Builders for test data. Every poll window is centred on NOW so services
can be driven with an explicit clock.
"""
from datetime import datetime, timedelta

from pollvault.orm.hackathon import HackathonStatus
from pollvault.services import electorate_service, poll_service

NOW = datetime(2026, 3, 14, 12, 0, 0)
HOUR = timedelta(hours=1)


async def make_hackathon(db, status=HackathonStatus.LIVE, **kwargs):
    kwargs.setdefault("name", "Spring Hack")
    kwargs.setdefault("created_by", "organizer@example.com")
    return await poll_service.create_hackathon(db, status=status, **kwargs)


async def make_poll(db, hackathon, team_names=("Alpha", "Beta", "Gamma"), **kwargs):
    kwargs.setdefault("name", "Best Project")
    kwargs.setdefault("start_time", NOW - HOUR)
    kwargs.setdefault("end_time", NOW + HOUR)
    teams = kwargs.pop("teams", None) or [{"team_name": name} for name in team_names]
    poll = await poll_service.create_poll(db, hackathon.id, teams=teams, **kwargs)
    entries = await poll_service.list_entries(db, poll.id)
    return poll, [e.team for e in entries]


async def issue_token(db, poll, email=None, assigned_team_id=None):
    issued = await electorate_service.issue_voter_tokens(
        db, poll.id, [{"email": email, "assigned_team_id": assigned_team_id}]
    )
    return issued[0].token, issued[0].voter_token


async def add_judge(db, poll, email="judge@example.com", name="Judge"):
    judge, _ = await electorate_service.add_judge(db, poll.id, email, name)
    return judge
