"""Local JSON API for the timesheet UI.

All endpoints live under /api/v1/ and return JSON. They map one-to-one to
the operations the desktop shell calls: sprint load, worklog edits,
status transitions and issue field edits.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from .config import AuthenticationMissing, ConfigError, Settings
from .jira import ApiError, JiraError
from .session import Session
from .sprint import LoadCancelled, NoActiveSprintError
from .worklogs import ConflictError

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Pydantic request models ---


class HoursUpdate(BaseModel):
    hours: float


class TransitionApply(BaseModel):
    transition_id: str = Field(min_length=1)


class SummaryUpdate(BaseModel):
    summary: str


class DescriptionUpdate(BaseModel):
    html: str = ""


class PointsUpdate(BaseModel):
    points: float | None = None


class SubtaskCreate(BaseModel):
    summary: str


# --- Session lifecycle ---

_session: Session | None = None


def get_session() -> Session:
    """Get the cached session, creating it from stored settings.

    Raises:
        AuthenticationMissing: If credentials are not configured.
    """
    global _session  # noqa: PLW0603
    if _session is None or _session.client.is_closed:
        _session = Session(Settings.load())
    return _session


async def close_session() -> None:
    """Log out and forget the cached session."""
    global _session  # noqa: PLW0603
    if _session is not None:
        await _session.logout()
        _session = None


# --- Helpers ---


def _error(message: str, code: str, status: int, **extra: object) -> JSONResponse:
    return JSONResponse({"error": message, "code": code, **extra}, status_code=status)


def _handle_exception(e: Exception) -> JSONResponse:
    """Map engine exceptions to JSON error responses."""
    msg = str(e)
    if isinstance(e, AuthenticationMissing):
        return _error(msg, "auth_missing", 401)
    if isinstance(e, ConfigError):
        return _error(msg, "config_error", 400)
    if isinstance(e, ConflictError):
        applied = [
            {"kind": op.kind, "worklogId": op.worklog_id, "seconds": op.seconds}
            for op in e.applied
        ]
        return _error(msg, "conflict", 409, applied=applied)
    if isinstance(e, ValueError):
        return _error(msg, "invalid_input", 400)
    if isinstance(e, NoActiveSprintError):
        return _error(msg, "not_found", 404)
    if isinstance(e, LoadCancelled):
        return _error(msg, "cancelled", 409)
    if isinstance(e, ApiError):
        return _error(msg, "api_error", 502, upstreamStatus=e.status)
    if isinstance(e, JiraError):
        return _error(msg, "jira_error", 502)
    logger.exception("Unhandled error in API v1")
    return _error("Internal server error", "internal_error", 500)


# --- Auth routes ---


@router.get("/api/v1/auth")
async def auth_status():
    settings = Settings.load()
    return {
        "isAuthenticated": settings.is_authenticated,
        "siteUrl": settings.site_url,
        "boardId": settings.board_id,
    }


@router.post("/api/v1/login")
async def login():
    try:
        session = get_session()
        user = await session.login()
    except Exception as e:
        return _handle_exception(e)
    return {"success": True, "displayName": user.display_name or session.settings.email}


@router.post("/api/v1/logout")
async def logout():
    await close_session()
    return {"success": True}


# --- Sprint routes ---


@router.get("/api/v1/sprint")
async def sprint_overview():
    try:
        session = get_session()
        load = await session.sprint_overview()
    except Exception as e:
        return _handle_exception(e)
    result = load.to_dict()
    del result["worklogs"], result["errors"]
    result["siteUrl"] = session.settings.site_url
    return result


@router.get("/api/v1/sprint/grid")
async def sprint_grid():
    try:
        session = get_session()
        load = await session.load_sprint()
        await session.transitions.wait_prefetch()
    except Exception as e:
        return _handle_exception(e)
    result = load.to_dict()
    result["siteUrl"] = session.settings.site_url
    result["dayTotals"] = load.day_totals()
    result["totalSeconds"] = load.total_seconds
    return result


# --- Worklog routes ---


@router.get("/api/v1/issues/{key}/worklogs")
async def issue_worklogs(key: str, start: str, end: str):
    try:
        session = get_session()
        days = await session.aggregator.issue_worklogs(key, start, end)
    except Exception as e:
        return _handle_exception(e)
    return {"issueKey": key, "days": days}


@router.put("/api/v1/issues/{key}/worklogs/{day}")
async def set_worklog_hours(key: str, day: str, body: HoursUpdate):
    try:
        session = get_session()
        result = await session.reconciler.set_target_hours(key, day, body.hours)
    except Exception as e:
        return _handle_exception(e)
    return result.to_dict()


# --- Transition routes ---


@router.get("/api/v1/issues/{key}/transitions")
async def list_transitions(key: str):
    try:
        session = get_session()
        transitions = await session.ordered_transitions(key)
    except Exception as e:
        return _handle_exception(e)
    return [t.to_dict() for t in transitions]


@router.post("/api/v1/issues/{key}/transitions")
async def apply_transition(key: str, body: TransitionApply):
    try:
        session = get_session()
        status, category = await session.transitions.transition_issue(
            key, body.transition_id
        )
    except Exception as e:
        return _handle_exception(e)
    return {"status": status, "statusCategory": category}


# --- Issue routes ---


@router.get("/api/v1/issues/{key}")
async def issue_details(key: str):
    try:
        details = await get_session().issues.get_details(key)
    except Exception as e:
        return _handle_exception(e)
    return details.to_dict()


@router.delete("/api/v1/issues/{key}", status_code=204)
async def delete_issue(key: str):
    try:
        await get_session().issues.delete_issue(key)
    except Exception as e:
        return _handle_exception(e)
    return Response(status_code=204)


@router.put("/api/v1/issues/{key}/summary")
async def update_summary(key: str, body: SummaryUpdate):
    try:
        summary = await get_session().issues.update_summary(key, body.summary)
    except Exception as e:
        return _handle_exception(e)
    return {"key": key, "summary": summary}


@router.put("/api/v1/issues/{key}/description")
async def update_description(key: str, body: DescriptionUpdate):
    try:
        document = await get_session().issues.update_description(key, body.html)
    except Exception as e:
        return _handle_exception(e)
    return {"key": key, "description": document}


@router.put("/api/v1/issues/{key}/points")
async def update_points(key: str, body: PointsUpdate):
    try:
        points = await get_session().issues.update_story_points(key, body.points)
    except Exception as e:
        return _handle_exception(e)
    return {"key": key, "points": points}


@router.post("/api/v1/issues/{key}/subtasks", status_code=201)
async def create_subtask(key: str, body: SubtaskCreate):
    try:
        new_key = await get_session().issues.create_subtask(key, body.summary)
    except Exception as e:
        return _handle_exception(e)
    return {"key": new_key, "parentKey": key}


# --- Application ---

app = FastAPI(title="Jira Timesheet")
app.include_router(router)


@app.on_event("shutdown")
async def shutdown_event():
    """Close the cached session on shutdown."""
    await close_session()


@app.get("/health")
async def health() -> JSONResponse:
    """Return health status and whether credentials are configured."""
    settings = Settings.load()
    return JSONResponse(
        content={
            "status": "ok",
            "authenticated": settings.is_authenticated,
        }
    )
