"""Tests for issue field edits."""

import asyncio

import pytest

from timesheet.jira import ApiError, JiraError


@pytest.fixture()
def issue(fake):
    fake.add_issue("PROJ-1", "Original summary", points=3)
    return fake


class TestGetDetails:
    def test_details(self, issue, session):
        details = asyncio.run(session.issues.get_details("PROJ-1"))
        assert details.summary == "Original summary"
        assert details.points == 3.0
        assert details.project_key == "PROJ"
        assert details.to_dict()["subtasks"] == []

    def test_missing_issue(self, issue, session):
        with pytest.raises(ApiError, match="404"):
            asyncio.run(session.issues.get_details("PROJ-404"))


class TestUpdates:
    def test_summary(self, issue, session):
        assert asyncio.run(session.issues.update_summary("PROJ-1", "  New title ")) == "New title"
        assert issue.issues["PROJ-1"]["fields"]["summary"] == "New title"

    def test_blank_summary_rejected(self, issue, session):
        with pytest.raises(ValueError, match="must not be empty"):
            asyncio.run(session.issues.update_summary("PROJ-1", "   "))
        assert issue.calls("PUT") == []

    def test_description_converted(self, issue, session):
        asyncio.run(session.issues.update_description("PROJ-1", "<p><b>Hi</b></p>"))
        description = issue.issues["PROJ-1"]["fields"]["description"]
        assert description["type"] == "doc"
        assert description["content"][0]["content"][0]["marks"] == [{"type": "strong"}]

    def test_story_points(self, issue, session):
        assert asyncio.run(session.issues.update_story_points("PROJ-1", 8)) == 8.0
        assert issue.issues["PROJ-1"]["fields"]["customfield_10016"] == 8.0

    def test_clear_story_points(self, issue, session):
        assert asyncio.run(session.issues.update_story_points("PROJ-1", None)) is None
        assert issue.issues["PROJ-1"]["fields"]["customfield_10016"] is None

    def test_negative_points_rejected(self, issue, session):
        with pytest.raises(ValueError, match="non-negative"):
            asyncio.run(session.issues.update_story_points("PROJ-1", -1))

    def test_no_points_field(self, issue, session):
        issue.fields = [{"id": "summary", "name": "Summary"}]
        with pytest.raises(JiraError, match="No story points field"):
            asyncio.run(session.issues.update_story_points("PROJ-1", 2))


class TestSubtasks:
    def test_create_subtask(self, issue, session):
        key = asyncio.run(session.issues.create_subtask("PROJ-1", "Write tests"))
        assert key.startswith("PROJ-")
        created = issue.issues[key]["fields"]
        assert created["summary"] == "Write tests"
        assert created["parent"] == {"key": "PROJ-1"}
        [post] = issue.calls("POST", "/rest/api/3/issue")
        assert b'"10003"' in post.content

    def test_no_subtask_type(self, issue, session):
        issue.issue_types = [{"id": "10001", "name": "Task", "subtask": False}]
        with pytest.raises(JiraError, match="no subtask issue type"):
            asyncio.run(session.issues.create_subtask("PROJ-1", "x"))

    def test_delete(self, issue, session):
        asyncio.run(session.issues.delete_issue("PROJ-1"))
        assert "PROJ-1" not in issue.issues
