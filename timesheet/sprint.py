"""Active-sprint lookup, issue search and per-day worklog aggregation."""

import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .cache import MetadataCache
from .dates import date_key, date_range, parse_date_key, resolve_timezone
from .jira import ApiError, JiraClient, JiraError
from .models import DEFAULT_STATUS_CATEGORY, Issue, Sprint, SprintLoad, WorklogEntry
from .pagination import DEFAULT_PAGE_SIZE, iter_pages

if TYPE_CHECKING:
    from .transitions import TransitionCache

logger = logging.getLogger(__name__)

BASE_ISSUE_FIELDS: tuple[str, ...] = (
    "key",
    "summary",
    "status",
    "labels",
    "issuetype",
    "parent",
)

# Called after each issue's worklogs are applied: (issue_key, days, error)
IssueCallback = Callable[[str, dict[str, int], str | None], None]


class SprintError(JiraError):
    """Raised when the active sprint cannot be resolved."""

    pass


class NoActiveSprintError(SprintError):
    """The board has no sprint in the active state."""

    pass


class LoadCancelled(Exception):
    """A newer sprint load superseded this one."""

    pass


# --- Load generations ---


class LoadGenerations:
    """Monotonic counter tagging each sprint load.

    ``begin()`` supersedes every token handed out before it. In-flight
    requests are not aborted; their results are dropped at the next check.
    """

    def __init__(self) -> None:
        self.current = 0

    def begin(self) -> "CancellationToken":
        self.current += 1
        return CancellationToken(self, self.current)


class CancellationToken:
    def __init__(self, generations: LoadGenerations, generation: int):
        self._generations = generations
        self.generation = generation

    @property
    def cancelled(self) -> bool:
        return self._generations.current != self.generation

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise LoadCancelled(f"Sprint load {self.generation} was superseded")


def parse_story_points(raw: object) -> float | None:
    """Lenient story-points parse: numbers and numeric strings, else None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int | float):
        value = float(raw)
    elif isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            value = float(raw)
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def _parse_issue(item: dict, points_field: str | None) -> Issue:
    fields = item.get("fields") or {}
    status = fields.get("status") or {}
    issue_type = fields.get("issuetype") or {}
    parent = fields.get("parent") or {}
    return Issue(
        key=item["key"],
        summary=fields.get("summary") or "",
        status=status.get("name") or "",
        status_category=(status.get("statusCategory") or {}).get("colorName")
        or DEFAULT_STATUS_CATEGORY,
        labels=tuple(fields.get("labels") or ()),
        points=parse_story_points(fields.get(points_field)) if points_field else None,
        is_subtask=bool(issue_type.get("subtask")),
        parent_key=parent.get("key"),
    )


class SprintAggregator:
    """Builds the per-issue, per-day grid for the user's active sprint."""

    def __init__(self, client: JiraClient, cache: MetadataCache):
        self.client = client
        self.cache = cache

    async def active_sprint(self, board_id: str | int) -> Sprint:
        """Resolve the board's active sprint with day keys in Jira's timezone.

        Raises:
            NoActiveSprintError: If no sprint is active.
            SprintError: If the agile API call fails.
        """
        user = await self.cache.user_context()
        tz = resolve_timezone(user.timezone)
        try:
            data = await self.client.request_json(
                f"/rest/agile/1.0/board/{board_id}/sprint", params={"state": "active"}
            )
        except ApiError as e:
            raise SprintError(
                "Could not get sprint. Make sure you have Jira Software "
                f"permissions and the Board ID is correct. ({e})"
            ) from e

        values = (data or {}).get("values") or []
        if not values:
            raise NoActiveSprintError("No active sprint found on this board")

        raw = values[0]
        end = raw.get("endDate") or raw.get("completeDate") or datetime.now(UTC)
        start = raw.get("startDate") or end
        return Sprint(
            id=raw["id"],
            name=raw.get("name", ""),
            start_key=date_key(start, tz),
            end_key=date_key(end, tz),
        )

    async def sprint_issues(self, sprint: Sprint) -> list[Issue]:
        """Issues assigned to the current user in ``sprint``, ordered by key."""
        points_field = await self.cache.story_points_field_id()
        fields = list(BASE_ISSUE_FIELDS)
        if points_field:
            fields.append(points_field)
        jql = f"assignee = currentUser() AND sprint = {sprint.id} ORDER BY key"

        async def fetch(start_at: int, max_results: int) -> dict:
            return await self.client.request_json(
                "/rest/api/3/search/jql",
                params={
                    "jql": jql,
                    "startAt": start_at,
                    "maxResults": max_results,
                    "fields": ",".join(fields),
                },
            )

        issues: list[Issue] = []
        async for page in iter_pages(fetch, "issues", page_size=DEFAULT_PAGE_SIZE):
            issues.extend(_parse_issue(item, points_field) for item in page.items)
            logger.debug("Fetched %d of %d issues", len(issues), page.total)
        return issues

    async def issue_worklogs(
        self, issue_key: str, start_key: str, end_key: str
    ) -> dict[str, int]:
        """Seconds per day logged by the current user on ``issue_key``.

        Only entries whose day key falls within [start_key, end_key] count.
        """
        parse_date_key(start_key)
        parse_date_key(end_key)
        user = await self.cache.user_context()
        tz = resolve_timezone(user.timezone)
        days: dict[str, int] = {}

        async for page in iter_worklog_pages(self.client, issue_key):
            for item in page.items:
                entry = WorklogEntry.from_api(item)
                if entry.author_id != user.account_id:
                    continue
                day = date_key(entry.started, tz)
                if day < start_key or day > end_key:
                    continue
                days[day] = days.get(day, 0) + entry.seconds
        return days

    async def load_issues(self, board_id: str | int) -> SprintLoad:
        """Stage 1: sprint, day keys, board order and issues, no worklogs."""
        user = await self.cache.user_context()
        sprint = await self.active_sprint(board_id)
        status_order = await self.cache.board_status_order(board_id)
        issues = await self.sprint_issues(sprint)
        result = SprintLoad(
            sprint=sprint,
            dates=date_range(sprint.start_key, sprint.end_key),
            issues=issues,
            status_order=status_order,
            user=user.display_name,
        )
        logger.info(
            "Loaded sprint %s (%s..%s) with %d issues",
            sprint.name,
            sprint.start_key,
            sprint.end_key,
            len(issues),
        )
        return result

    async def load(
        self,
        board_id: str | int,
        token: CancellationToken | None = None,
        *,
        on_issue: IssueCallback | None = None,
        prefetcher: "TransitionCache | None" = None,
    ) -> SprintLoad:
        """Staged sprint load.

        Stage 1 resolves the sprint and issue list; any failure aborts the
        load. The transition prefetch then runs alongside stage 2, which
        fetches each issue's worklogs one at a time. A failure on one issue
        is recorded in ``SprintLoad.errors`` and the loop moves on.

        Raises:
            LoadCancelled: If ``token`` was superseded before results were applied.
        """
        result = await self.load_issues(board_id)
        if token:
            token.raise_if_cancelled()

        if prefetcher is not None:
            prefetcher.start_prefetch([i.key for i in result.issues])

        sprint = result.sprint
        for issue in result.issues:
            if token:
                token.raise_if_cancelled()
            error: str | None = None
            try:
                days = await self.issue_worklogs(
                    issue.key, sprint.start_key, sprint.end_key
                )
            except (JiraError, KeyError, ValueError) as e:
                logger.warning("Failed to fetch worklogs for %s: %s", issue.key, e)
                days = {}
                error = str(e)
            if token:
                token.raise_if_cancelled()
            result.worklogs[issue.key] = days
            if error is not None:
                result.errors[issue.key] = error
            if on_issue is not None:
                on_issue(issue.key, days, error)

        return result


def iter_worklog_pages(client: JiraClient, issue_key: str):
    """Lazy page iterator over an issue's worklogs."""

    async def fetch(start_at: int, max_results: int) -> dict:
        return await client.request_json(
            f"/rest/api/3/issue/{issue_key}/worklog",
            params={"startAt": start_at, "maxResults": max_results},
        )

    return iter_pages(fetch, "worklogs", page_size=DEFAULT_PAGE_SIZE)
