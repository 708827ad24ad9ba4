"""Data models for sprints, issues, worklogs and transitions."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .dates import parse_instant

DEFAULT_STATUS_CATEGORY = "medium-gray"

# issue key -> date key -> seconds logged by the current user
DayBucket = dict[str, dict[str, int]]


@dataclass(frozen=True)
class UserContext:
    account_id: str
    timezone: str
    display_name: str


@dataclass(frozen=True)
class StatusRef:
    """A workflow status as (id, name); either part may be missing."""

    id: str | None
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class Sprint:
    id: int
    name: str
    start_key: str
    end_key: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_key,
            "endDate": self.end_key,
        }


@dataclass(frozen=True)
class Issue:
    key: str
    summary: str
    status: str
    status_category: str = DEFAULT_STATUS_CATEGORY
    labels: tuple[str, ...] = ()
    points: float | None = None
    is_subtask: bool = False
    parent_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "summary": self.summary,
            "status": self.status,
            "statusCategory": self.status_category,
            "labels": list(self.labels),
            "points": self.points,
            "subtask": self.is_subtask,
            "parentKey": self.parent_key,
        }


@dataclass(frozen=True)
class WorklogEntry:
    """A remote worklog record. Never cached; always fetched fresh."""

    id: str
    author_id: str | None
    started: datetime
    started_raw: str
    seconds: int

    @classmethod
    def from_api(cls, item: dict) -> "WorklogEntry":
        started_raw = item["started"]
        return cls(
            id=str(item["id"]),
            author_id=(item.get("author") or {}).get("accountId"),
            started=parse_instant(started_raw),
            started_raw=started_raw,
            seconds=int(item.get("timeSpentSeconds") or 0),
        )


@dataclass(frozen=True)
class Transition:
    id: str
    name: str
    to: StatusRef
    to_category: str = DEFAULT_STATUS_CATEGORY

    @classmethod
    def from_api(cls, item: dict) -> "Transition":
        target = item.get("to") or {}
        return cls(
            id=str(item["id"]),
            name=item.get("name", ""),
            to=StatusRef(
                id=target.get("id"),
                name=target.get("name") or item.get("name", ""),
            ),
            to_category=(target.get("statusCategory") or {}).get("colorName")
            or DEFAULT_STATUS_CATEGORY,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "to": {**self.to.to_dict(), "statusCategory": self.to_category},
        }


@dataclass
class SprintLoad:
    """Result of one staged sprint load."""

    sprint: Sprint
    dates: list[str]
    issues: list[Issue]
    status_order: list[StatusRef]
    user: str
    worklogs: DayBucket = field(default_factory=dict)
    # issue key -> error message for issues whose worklogs failed to load
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total_seconds(self) -> int:
        return sum(sum(days.values()) for days in self.worklogs.values())

    def day_totals(self) -> dict[str, int]:
        """Seconds per date key across all issues, zero-filled."""
        totals = {d: 0 for d in self.dates}
        for days in self.worklogs.values():
            for day, seconds in days.items():
                totals[day] = totals.get(day, 0) + seconds
        return totals

    def issue_totals(self) -> dict[str, int]:
        return {key: sum(days.values()) for key, days in self.worklogs.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "sprint": self.sprint.to_dict(),
            "dates": self.dates,
            "issues": [i.to_dict() for i in self.issues],
            "statusOrder": [s.to_dict() for s in self.status_order],
            "user": self.user,
            "worklogs": self.worklogs,
            "errors": self.errors,
        }
