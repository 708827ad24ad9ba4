"""Worklog reconciliation: turn "H hours on day D" into remote mutations.

Given a target duration for (issue, day), the reconciler re-fetches every
worklog on the issue, keeps the current user's entries for that day and
applies the smallest change that reaches the target:

- equal: nothing to do
- more: one new entry for the difference, stamped at noon of the day
- less: trim newest-first, deleting whole entries while they fit in the
  excess and shrinking the first one that does not

Older entries therefore stay untouched as the historical record and the
most recent entries absorb corrections.

There is no rollback. If the reduction cannot finish (an entry was removed
remotely in the meantime), the operations already applied stay applied and
are reported on the ConflictError.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from .cache import MetadataCache
from .dates import date_key, format_worklog_started, parse_date_key, resolve_timezone
from .jira import ApiError, JiraClient, JiraError
from .models import WorklogEntry
from .pagination import collect_all
from .sprint import iter_worklog_pages

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600

_QUIET = {"notifyUsers": "false"}


class WorklogError(JiraError):
    """Raised when a worklog edit cannot be applied."""

    pass


class InvalidInputError(WorklogError, ValueError):
    """Malformed edit request (negative hours, bad date, missing key)."""

    pass


@dataclass(frozen=True)
class WorklogOperation:
    kind: Literal["create", "delete", "shrink"]
    seconds: int
    worklog_id: str | None = None


class ConflictError(WorklogError):
    """The remote total was smaller than assumed; target not reached."""

    def __init__(self, message: str, applied: tuple[WorklogOperation, ...] = ()):
        super().__init__(message)
        self.applied = applied


@dataclass(frozen=True)
class ReconcileResult:
    updated: bool
    seconds: int
    operations: tuple[WorklogOperation, ...] = ()

    def to_dict(self) -> dict:
        return {
            "updated": self.updated,
            "seconds": self.seconds,
            "operations": [
                {"kind": op.kind, "worklogId": op.worklog_id, "seconds": op.seconds}
                for op in self.operations
            ],
        }


class WorklogEdit(BaseModel):
    issue_key: str = Field(min_length=1)
    date: str
    hours: float = Field(ge=0, allow_inf_nan=False)

    @field_validator("issue_key")
    @classmethod
    def check_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Issue key must not be blank")
        return v

    @field_validator("date")
    @classmethod
    def check_date(cls, v: str) -> str:
        parse_date_key(v)
        return v

    @property
    def target_seconds(self) -> int:
        return round(self.hours * SECONDS_PER_HOUR)


def validate_edit(issue_key: str, day: str, hours: float) -> WorklogEdit:
    """Validate an edit request, raising InvalidInputError on bad input."""
    try:
        return WorklogEdit(issue_key=issue_key, date=day, hours=hours)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        if field == "hours" and first.get("type") == "greater_than_equal":
            raise InvalidInputError("Hours must be 0 or greater") from None
        raise InvalidInputError(
            f"Invalid worklog update: {field}: {first.get('msg')}"
        ) from None


def plan_reduction(
    entries: list[WorklogEntry], excess: int
) -> tuple[list[WorklogOperation], int]:
    """Walk ``entries`` (newest first) removing ``excess`` seconds.

    Returns the operations and whatever excess could not be removed.
    """
    operations: list[WorklogOperation] = []
    remaining = excess
    for entry in entries:
        if remaining <= 0:
            break
        if entry.seconds <= remaining:
            operations.append(WorklogOperation("delete", entry.seconds, entry.id))
            remaining -= entry.seconds
        else:
            operations.append(
                WorklogOperation("shrink", entry.seconds - remaining, entry.id)
            )
            remaining = 0
    return operations, remaining


class WorklogReconciler:
    """Applies target hours for (issue, day) against remote worklogs.

    Edits on the same issue are serialized within this reconciler; edits
    from other processes or other clients are not coordinated.
    """

    def __init__(self, client: JiraClient, cache: MetadataCache):
        self.client = client
        self.cache = cache
        # per-issue locks, dropped once no edit holds or awaits them
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    async def fetch_all(self, issue_key: str) -> list[WorklogEntry]:
        """Every worklog on the issue, all pages."""
        items = await collect_all(iter_worklog_pages(self.client, issue_key))
        return [WorklogEntry.from_api(item) for item in items]

    async def day_entries(self, issue_key: str, day: str) -> list[WorklogEntry]:
        """Current user's entries on ``day``, newest first."""
        user = await self.cache.user_context()
        tz = resolve_timezone(user.timezone)
        entries = [
            e
            for e in await self.fetch_all(issue_key)
            if e.author_id == user.account_id and date_key(e.started, tz) == day
        ]
        entries.sort(key=lambda e: e.started, reverse=True)
        return entries

    async def set_target_hours(
        self, issue_key: str, day: str, hours: float
    ) -> ReconcileResult:
        """Make the user's total on (issue, day) equal ``round(hours * 3600)``.

        Raises:
            InvalidInputError: For negative/non-finite hours or a bad date key.
            ConflictError: If the reduction could not reach the target.
            ApiError: If a remote call fails (earlier operations stay applied).
        """
        edit = validate_edit(issue_key, day, hours)
        key = edit.issue_key
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] += 1
        try:
            async with lock:
                return await self._reconcile(edit)
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _reconcile(self, edit: WorklogEdit) -> ReconcileResult:
        issue_key, day, target = edit.issue_key, edit.date, edit.target_seconds
        entries = await self.day_entries(issue_key, day)
        current = sum(e.seconds for e in entries)

        if current == target:
            logger.debug("%s on %s already at %ds", issue_key, day, current)
            return ReconcileResult(updated=False, seconds=current)

        if target > current:
            op = await self._create(issue_key, day, target - current)
            logger.info("%s on %s: %ds -> %ds (created)", issue_key, day, current, target)
            return ReconcileResult(updated=True, seconds=target, operations=(op,))

        applied = await self._reduce(issue_key, entries, current - target)
        logger.info(
            "%s on %s: %ds -> %ds (%d operations)",
            issue_key,
            day,
            current,
            target,
            len(applied),
        )
        return ReconcileResult(updated=True, seconds=target, operations=applied)

    async def _create(self, issue_key: str, day: str, seconds: int) -> WorklogOperation:
        user = await self.cache.user_context()
        started = format_worklog_started(day, resolve_timezone(user.timezone))
        created = await self.client.send(
            "POST",
            f"/rest/api/3/issue/{issue_key}/worklog",
            json={"timeSpentSeconds": seconds, "started": started},
        )
        worklog_id = str(created["id"]) if created and "id" in created else None
        return WorklogOperation("create", seconds, worklog_id)

    async def _reduce(
        self, issue_key: str, entries: list[WorklogEntry], excess: int
    ) -> tuple[WorklogOperation, ...]:
        by_id = {e.id: e for e in entries}
        planned, remaining = plan_reduction(entries, excess)
        applied: list[WorklogOperation] = []

        for op in planned:
            path = f"/rest/api/3/issue/{issue_key}/worklog/{op.worklog_id}"
            try:
                if op.kind == "delete":
                    await self.client.send("DELETE", path, params=_QUIET)
                else:
                    await self.client.send(
                        "PUT",
                        path,
                        params=_QUIET,
                        json={
                            "timeSpentSeconds": op.seconds,
                            "started": by_id[op.worklog_id].started_raw,
                        },
                    )
            except ApiError as e:
                if e.status != 404:
                    raise
                raise ConflictError(
                    f"Worklog {op.worklog_id} on {issue_key} changed remotely; "
                    "unable to reduce worklog hours to the requested value.",
                    applied=tuple(applied),
                ) from e
            applied.append(op)

        if remaining > 0:
            raise ConflictError(
                "Unable to reduce worklog hours to the requested value.",
                applied=tuple(applied),
            )
        return tuple(applied)
