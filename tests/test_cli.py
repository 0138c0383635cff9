"""
Operator CLI: argument parsing and a few commands against a file database.
"""
import asyncio
import json

import pytest

from pollvault.cli import create_parser, main
from pollvault.database import build_engine, build_sessionmaker, init_db
from tests.factories import make_hackathon, make_poll


def seed(url):
    async def _seed():
        engine = build_engine(url)
        try:
            await init_db(engine)
            async with build_sessionmaker(engine)() as db:
                hackathon = await make_hackathon(db)
                poll, _ = await make_poll(db, hackathon)
                await db.commit()
                return hackathon.id, poll.id
        finally:
            await engine.dispose()

    return asyncio.run(_seed())


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


class TestParser:

    def test_transition_arguments(self):
        args = create_parser().parse_args(["hackathon", "transition", "--id", "3", "--status", "closed"])
        assert (args.command, args.hackathon_action, args.id, args.status) == ("hackathon", "transition", 3, "closed")

    def test_unknown_status_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["hackathon", "transition", "--id", "3", "--status", "archived"])

    def test_verify_needs_a_target(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["integrity", "verify"])

    def test_no_command(self, capsys):
        assert main([]) == 1


class TestCommands:

    def test_verify_event(self, database_url, capsys):
        hackathon_id, _ = seed(database_url)

        code = main(["--database-url", database_url, "integrity", "verify", "--hackathon", str(hackathon_id)])

        assert code == 0
        assert "All valid: True" in capsys.readouterr().out

    def test_tally_json(self, database_url, capsys):
        _, poll_id = seed(database_url)

        code = main(["--database-url", database_url, "poll", "tally", "--id", str(poll_id), "--json"])

        assert code == 0
        tally = json.loads(capsys.readouterr().out)
        assert [row["team_name"] for row in tally["rows"]] == ["Alpha", "Beta", "Gamma"]

    def test_domain_errors_exit_nonzero(self, database_url, capsys):
        seed(database_url)

        code = main(["--database-url", database_url, "hackathon", "transition", "--id", "999", "--status", "closed"])

        assert code == 1
        assert "NOT_FOUND" in capsys.readouterr().out
