"""
Shared plumbing for CLI command handlers.
"""
import asyncio
import json
from contextlib import asynccontextmanager

from pollvault.database import build_engine, build_sessionmaker
from pollvault.exceptions import VotingError


class Command:
    """Runs one async action per invocation against its own engine."""

    def __init__(self, database_url: str):
        self.database_url = database_url

    @asynccontextmanager
    async def session(self):
        engine = build_engine(self.database_url)
        try:
            async with build_sessionmaker(engine)() as db:
                yield db
        finally:
            await engine.dispose()

    def run(self, coro) -> int:
        try:
            return asyncio.run(coro) or 0
        except VotingError as e:
            print(f"Error [{e.code}]: {e.message}")
            if e.details:
                print(json.dumps(e.details, indent=2, default=str))
            return 1
