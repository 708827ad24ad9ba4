"""Shared fixtures: a fake Jira site and sessions wired to it."""

import pytest
from fake_jira import FakeJira

from timesheet.config import ApiContext, Settings
from timesheet.jira import JiraClient
from timesheet.session import Session


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the real environment and config file out of every test."""
    for name in (
        "JIRA_SITE_URL",
        "JIRA_EMAIL",
        "JIRA_API_TOKEN",
        "JIRA_BOARD_ID",
        "JIRA_CA_BUNDLE",
        "JIRA_INSECURE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("JIRA_TIMESHEET_CONFIG", str(tmp_path / "missing.yml"))


@pytest.fixture()
def fake():
    return FakeJira()


@pytest.fixture()
def settings():
    return Settings(
        site_url="https://example.atlassian.net",
        email="dana@example.com",
        api_token="secret-token",
        board_id="42",
    )


@pytest.fixture()
def client(fake, settings):
    """JiraClient whose transport is the fake site."""
    return JiraClient(ApiContext.from_settings(settings), transport=fake.transport)


@pytest.fixture()
def session(fake, settings):
    return Session(settings, transport=fake.transport)
