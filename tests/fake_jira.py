"""In-process Jira fake served through httpx.MockTransport.

Holds mutable issue and worklog state so tests can apply an edit and then
re-fetch to check what Jira would now report.
"""

import asyncio
import itertools
import json
import re

import httpx

ACCOUNT_ID = "acc-me"
OTHER_ACCOUNT_ID = "acc-other"

_ISSUE_RE = re.compile(r"^/rest/api/3/issue/([A-Z][A-Z0-9]*-\d+)(/.*)?$")
_BOARD_RE = re.compile(r"^/rest/agile/1\.0/board/(\w+)/(sprint|configuration)$")
_CREATEMETA_RE = re.compile(r"^/rest/api/3/issue/createmeta/(\w+)/issuetypes$")


def status(name: str, color: str = "blue-gray", status_id: str | None = None) -> dict:
    return {"id": status_id, "name": name, "statusCategory": {"colorName": color}}


class FakeJira:
    """A tiny stateful Jira Cloud.

    ``errors`` maps (METHOD, path) to (status, body) and short-circuits that
    route. ``page_limit`` caps maxResults on paged endpoints so tests can
    force several pages.
    """

    def __init__(self) -> None:
        self.myself = {
            "accountId": ACCOUNT_ID,
            "displayName": "Dana Dev",
            "timeZone": "UTC",
        }
        self.fields = [
            {"id": "summary", "name": "Summary"},
            {"id": "customfield_10016", "name": "Story Points"},
        ]
        self.sprints: dict[str, list[dict]] = {
            "42": [
                {
                    "id": 7,
                    "name": "Sprint 7",
                    "state": "active",
                    "startDate": "2024-01-01T09:00:00.000Z",
                    "endDate": "2024-01-14T17:00:00.000Z",
                }
            ]
        }
        self.boards: dict[str, dict] = {
            "42": {
                "columnConfig": {
                    "columns": [
                        {"name": "To Do", "statuses": [{"id": "1", "name": "To Do"}]},
                        {
                            "name": "In Progress",
                            "statuses": [{"id": "3", "name": "In Progress"}],
                        },
                        {"name": "Done", "statuses": [{"id": "10001", "name": "Done"}]},
                    ]
                }
            }
        }
        self.issues: dict[str, dict] = {}
        self.worklogs: dict[str, list[dict]] = {}
        self.transitions: dict[str, list[dict]] = {}
        self.issue_types = [
            {"id": "10001", "name": "Task", "subtask": False},
            {"id": "10003", "name": "Sub-task", "subtask": True},
        ]
        self.errors: dict[tuple[str, str], tuple[int, str]] = {}
        self.page_limit: int | None = None
        self.requests: list[httpx.Request] = []
        self._ids = itertools.count(1000)

    # --- Setup helpers ---

    def add_issue(
        self,
        key: str,
        summary: str = "",
        status_name: str = "To Do",
        *,
        points: float | str | None = None,
        labels: tuple[str, ...] = (),
        project: str | None = None,
    ) -> dict:
        fields = {
            "summary": summary or f"Work on {key}",
            "status": status(status_name, "blue-gray" if status_name == "To Do" else "yellow"),
            "labels": list(labels),
            "issuetype": {"name": "Task", "subtask": False},
            "project": {"key": project or key.split("-")[0]},
            "description": None,
            "subtasks": [],
            "customfield_10016": points,
        }
        issue = {"id": str(next(self._ids)), "key": key, "fields": fields}
        self.issues[key] = issue
        self.worklogs.setdefault(key, [])
        return issue

    def add_worklog(
        self, key: str, started: str, seconds: int, author: str = ACCOUNT_ID
    ) -> str:
        worklog_id = str(next(self._ids))
        self.worklogs.setdefault(key, []).append(
            {
                "id": worklog_id,
                "author": {"accountId": author},
                "started": started,
                "timeSpentSeconds": seconds,
            }
        )
        return worklog_id

    def worklog_seconds(self, key: str, author: str = ACCOUNT_ID) -> dict[str, int]:
        """Worklog id -> seconds for one author."""
        return {
            w["id"]: w["timeSpentSeconds"]
            for w in self.worklogs.get(key, [])
            if w["author"]["accountId"] == author
        }

    def calls(self, method: str, path_prefix: str = "") -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def yielding_transport(self) -> httpx.MockTransport:
        """Like ``transport`` but every request yields to the event loop once."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0)
            return self.handler(request)

        return httpx.MockTransport(handler)

    # --- Routing ---

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        error = self.errors.get((request.method, path))
        if error is not None:
            return httpx.Response(error[0], text=error[1])

        body = json.loads(request.content) if request.content else None

        if path == "/rest/api/3/myself":
            return httpx.Response(200, json=self.myself)
        if path == "/rest/api/3/field":
            return httpx.Response(200, json=self.fields)
        if path == "/rest/api/3/search/jql":
            return self._search(request)
        if path == "/rest/api/3/issue" and request.method == "POST":
            return self._create_issue(body)

        match = _CREATEMETA_RE.match(path)
        if match:
            return httpx.Response(200, json={"issueTypes": self.issue_types})

        match = _BOARD_RE.match(path)
        if match:
            board_id, kind = match.groups()
            if board_id not in self.boards:
                return httpx.Response(404, text="Board does not exist")
            if kind == "sprint":
                return httpx.Response(200, json={"values": self.sprints.get(board_id, [])})
            return httpx.Response(200, json=self.boards[board_id])

        match = _ISSUE_RE.match(path)
        if match:
            key, rest = match.group(1), match.group(2) or ""
            if key not in self.issues:
                return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
            if rest == "":
                return self._issue(request, key, body)
            if rest == "/transitions":
                return self._transitions(request, key, body)
            if rest.startswith("/worklog"):
                return self._worklog(request, key, rest, body)

        return httpx.Response(404, text=f"No fake route for {request.method} {path}")

    def _page(self, request: httpx.Request, items: list, items_key: str) -> httpx.Response:
        start_at = int(request.url.params.get("startAt", 0))
        max_results = int(request.url.params.get("maxResults", 50))
        if self.page_limit:
            max_results = min(max_results, self.page_limit)
        return httpx.Response(
            200,
            json={
                "startAt": start_at,
                "maxResults": max_results,
                "total": len(items),
                items_key: items[start_at : start_at + max_results],
            },
        )

    def _search(self, request: httpx.Request) -> httpx.Response:
        issues = [self.issues[k] for k in sorted(self.issues)]
        return self._page(request, issues, "issues")

    def _issue(self, request: httpx.Request, key: str, body: dict | None) -> httpx.Response:
        issue = self.issues[key]
        if request.method == "GET":
            return httpx.Response(200, json=issue)
        if request.method == "PUT":
            issue["fields"].update((body or {}).get("fields") or {})
            return httpx.Response(204)
        if request.method == "DELETE":
            del self.issues[key]
            self.worklogs.pop(key, None)
            return httpx.Response(204)
        return httpx.Response(405)

    def _transitions(self, request: httpx.Request, key: str, body: dict | None) -> httpx.Response:
        available = self.transitions.get(key, [])
        if request.method == "GET":
            return httpx.Response(200, json={"transitions": available})
        wanted = ((body or {}).get("transition") or {}).get("id")
        for transition in available:
            if transition["id"] == wanted:
                self.issues[key]["fields"]["status"] = transition["to"]
                return httpx.Response(204)
        return httpx.Response(400, json={"errorMessages": ["Transition is not valid"]})

    def _worklog(
        self, request: httpx.Request, key: str, rest: str, body: dict | None
    ) -> httpx.Response:
        entries = self.worklogs.setdefault(key, [])
        if rest == "/worklog":
            if request.method == "GET":
                return self._page(request, entries, "worklogs")
            entry = {
                "id": str(next(self._ids)),
                "author": {"accountId": self.myself["accountId"]},
                "started": body["started"],
                "timeSpentSeconds": body["timeSpentSeconds"],
            }
            entries.append(entry)
            return httpx.Response(201, json=entry)

        worklog_id = rest.removeprefix("/worklog/")
        for index, entry in enumerate(entries):
            if entry["id"] == worklog_id:
                break
        else:
            return httpx.Response(404, json={"errorMessages": ["Worklog not found"]})
        if request.method == "DELETE":
            del entries[index]
            return httpx.Response(204)
        if request.method == "PUT":
            entry["timeSpentSeconds"] = body["timeSpentSeconds"]
            entry["started"] = body.get("started", entry["started"])
            return httpx.Response(200, json=entry)
        return httpx.Response(405)

    def _create_issue(self, body: dict) -> httpx.Response:
        fields = body["fields"]
        project = fields["project"]["key"]
        key = f"{project}-{next(self._ids)}"
        issue = self.add_issue(key, fields["summary"], project=project)
        issue["fields"]["issuetype"] = {"name": "Sub-task", "subtask": True}
        issue["fields"]["parent"] = {"key": fields["parent"]["key"]}
        parent = self.issues.get(fields["parent"]["key"])
        if parent is not None:
            parent["fields"]["subtasks"].append({"key": key})
        return httpx.Response(201, json={"id": issue["id"], "key": key})
