"""Issue field edits: summary, description, story points, subtasks."""

import logging
from dataclasses import dataclass
from typing import Any

from .adf import html_to_adf
from .cache import MetadataCache
from .jira import JiraClient, JiraError
from .sprint import parse_story_points

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueDetails:
    key: str
    summary: str
    description: dict | None
    points: float | None
    subtasks: tuple[str, ...]
    project_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "summary": self.summary,
            "description": self.description,
            "points": self.points,
            "subtasks": list(self.subtasks),
            "projectKey": self.project_key,
        }


class IssueEditor:
    def __init__(self, client: JiraClient, cache: MetadataCache):
        self.client = client
        self.cache = cache

    async def get_details(self, issue_key: str) -> IssueDetails:
        points_field = await self.cache.story_points_field_id()
        fields = ["summary", "description", "subtasks", "project"]
        if points_field:
            fields.append(points_field)
        item = await self.client.request_json(
            f"/rest/api/3/issue/{issue_key}", params={"fields": ",".join(fields)}
        )
        data = item.get("fields") or {}
        return IssueDetails(
            key=item.get("key", issue_key),
            summary=data.get("summary") or "",
            description=data.get("description"),
            points=parse_story_points(data.get(points_field)) if points_field else None,
            subtasks=tuple(s["key"] for s in data.get("subtasks") or [] if s.get("key")),
            project_key=(data.get("project") or {}).get("key"),
        )

    async def _update_fields(self, issue_key: str, fields: dict[str, Any]) -> None:
        await self.client.send(
            "PUT", f"/rest/api/3/issue/{issue_key}", json={"fields": fields}
        )

    async def update_summary(self, issue_key: str, summary: str) -> str:
        summary = (summary or "").strip()
        if not summary:
            raise ValueError("Summary must not be empty")
        await self._update_fields(issue_key, {"summary": summary})
        return summary

    async def update_description(self, issue_key: str, html: str) -> dict:
        """Convert editor HTML to ADF and store it as the description."""
        document = html_to_adf(html)
        await self._update_fields(issue_key, {"description": document})
        return document

    async def update_story_points(self, issue_key: str, points: float | None) -> float | None:
        field_id = await self.cache.story_points_field_id()
        if not field_id:
            raise JiraError("No story points field is configured on this Jira site")
        if points is not None:
            points = parse_story_points(points)
            if points is None or points < 0:
                raise ValueError("Story points must be a non-negative number")
        await self._update_fields(issue_key, {field_id: points})
        return points

    async def _subtask_type_id(self, project_key: str) -> str:
        data = await self.client.request_json(
            f"/rest/api/3/issue/createmeta/{project_key}/issuetypes"
        )
        types = (data or {}).get("issueTypes") or (data or {}).get("values") or []
        for issue_type in types:
            if issue_type.get("subtask"):
                return str(issue_type["id"])
        raise JiraError(f"Project {project_key} has no subtask issue type")

    async def create_subtask(self, parent_key: str, summary: str) -> str:
        """Create a subtask under ``parent_key``. Returns the new issue key."""
        summary = (summary or "").strip()
        if not summary:
            raise ValueError("Summary must not be empty")
        parent = await self.client.request_json(
            f"/rest/api/3/issue/{parent_key}", params={"fields": "project"}
        )
        project_key = ((parent.get("fields") or {}).get("project") or {}).get("key")
        if not project_key:
            raise JiraError(f"Could not resolve the project of {parent_key}")

        type_id = await self._subtask_type_id(project_key)
        created = await self.client.send(
            "POST",
            "/rest/api/3/issue",
            json={
                "fields": {
                    "project": {"key": project_key},
                    "parent": {"key": parent_key},
                    "summary": summary,
                    "issuetype": {"id": type_id},
                }
            },
        )
        key = (created or {}).get("key")
        if not key:
            raise JiraError("Jira did not return a key for the new subtask")
        logger.info("Created subtask %s under %s", key, parent_key)
        return key

    async def delete_issue(self, issue_key: str) -> None:
        await self.client.send("DELETE", f"/rest/api/3/issue/{issue_key}")
        logger.info("Deleted issue %s", issue_key)
