"""Tests for the session lifecycle."""

import asyncio

import pytest

from timesheet.config import AuthenticationMissing, ConfigError, Settings
from timesheet.session import Session
from timesheet.sprint import LoadCancelled


@pytest.fixture()
def sprint_issues(fake):
    fake.add_issue("PROJ-1")
    fake.add_issue("PROJ-2")
    fake.transitions["PROJ-1"] = [{"id": "21", "name": "Start", "to": {"id": "3", "name": "In Progress"}}]
    fake.add_worklog("PROJ-2", "2024-01-05T10:00:00.000+0000", 1800)
    return fake


class TestSession:
    def test_requires_credentials(self):
        with pytest.raises(AuthenticationMissing):
            Session(Settings(site_url="https://x.atlassian.net"))

    def test_login(self, session):
        user = asyncio.run(session.login())
        assert user.display_name == "Dana Dev"

    def test_load_sprint_prefetches_transitions(self, sprint_issues, session):
        async def run():
            load = await session.load_sprint()
            await session.transitions.wait_prefetch()
            return load

        load = asyncio.run(run())
        assert load.worklogs == {"PROJ-1": {}, "PROJ-2": {"2024-01-05": 1800}}
        assert "PROJ-1" in session.transitions
        assert "PROJ-2" in session.transitions

    def test_newer_load_supersedes_older(self, sprint_issues, settings):
        session = Session(settings, transport=sprint_issues.yielding_transport)

        async def run():
            older = asyncio.ensure_future(session.load_sprint())
            await asyncio.sleep(0)
            newer = await session.load_sprint()
            return await asyncio.gather(older, return_exceptions=True), newer

        (older_result,), newer = asyncio.run(run())
        assert isinstance(older_result, LoadCancelled)
        assert newer.total_seconds == 1800

    def test_load_requires_board(self, fake, settings):
        no_board = Settings(settings.site_url, settings.email, settings.api_token)
        session = Session(no_board, transport=fake.transport)
        with pytest.raises(ConfigError, match="No board configured"):
            asyncio.run(session.load_sprint())

    def test_ordered_transitions(self, sprint_issues, session):
        sprint_issues.transitions["PROJ-1"].append(
            {"id": "11", "name": "Back", "to": {"id": "1", "name": "To Do"}}
        )
        transitions = asyncio.run(session.ordered_transitions("PROJ-1"))
        assert [t.id for t in transitions] == ["11", "21"]

    def test_logout_clears_everything(self, sprint_issues, session):
        async def run():
            async with session:
                await session.load_sprint()
                await session.transitions.wait_prefetch()

        asyncio.run(run())
        assert session.client.is_closed
        assert "PROJ-1" not in session.transitions
        assert session.generations.current == 2
