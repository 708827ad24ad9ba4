"""TTL-scoped metadata caches: current user, story-points field, board layout."""

import logging
import time
from collections.abc import Callable, Iterable

from cachetools import TTLCache

from .dates import local_timezone_name
from .jira import ApiError, JiraClient, ScopeMismatchError
from .models import StatusRef, UserContext

logger = logging.getLogger(__name__)

USER_CACHE_TTL = 5 * 60
FIELD_CACHE_TTL = 10 * 60
BOARD_CACHE_TTL = 10 * 60

# Ordered by precedence; the first matcher with any hit wins.
STORY_POINT_MATCHERS: tuple[Callable[[str], bool], ...] = (
    lambda name: name == "story point estimate",
    lambda name: name == "story points",
    lambda name: "story point estimate" in name,
    lambda name: "story points" in name,
    lambda name: "story point" in name,
)

_USER_KEY = "myself"
_FIELD_KEY = "story_points"


def match_story_points_field(fields: Iterable[dict]) -> str | None:
    """Pick the story-points field id from the field catalog."""
    normalized = [(f, str(f.get("name") or "").lower()) for f in fields]
    for matcher in STORY_POINT_MATCHERS:
        for field, name in normalized:
            if matcher(name):
                return field.get("id")
    return None


def flatten_board_statuses(config: dict) -> list[StatusRef]:
    """Statuses in column order, then in-column order, without duplicates."""
    columns = ((config or {}).get("columnConfig") or {}).get("columns") or []
    seen: set[tuple[str, str]] = set()
    statuses: list[StatusRef] = []
    for column in columns:
        for status in column.get("statuses") or []:
            if not status or not (status.get("id") or status.get("name")):
                continue
            ref = StatusRef(id=status.get("id") or None, name=status.get("name") or "")
            key = ("id", ref.id) if ref.id else ("name", ref.name)
            if key in seen:
                continue
            seen.add(key)
            statuses.append(ref)
    return statuses


class MetadataCache:
    """Session-owned metadata caches.

    Each entry lives in a TTLCache; an entry is valid only while its age
    is below the TTL. Refreshes are not coalesced: two tasks missing the
    cache at the same time both fetch and the later write wins.
    """

    def __init__(self, client: JiraClient, *, timer: Callable[[], float] = time.monotonic):
        self.client = client
        self._users: TTLCache[str, UserContext] = TTLCache(
            maxsize=1, ttl=USER_CACHE_TTL, timer=timer
        )
        self._fields: TTLCache[str, str | None] = TTLCache(
            maxsize=1, ttl=FIELD_CACHE_TTL, timer=timer
        )
        self._boards: TTLCache[str, list[StatusRef]] = TTLCache(
            maxsize=32, ttl=BOARD_CACHE_TTL, timer=timer
        )

    def clear(self) -> None:
        """Drop every entry (logout)."""
        self._users.clear()
        self._fields.clear()
        self._boards.clear()

    async def user_context(self) -> UserContext:
        if _USER_KEY in self._users:
            return self._users[_USER_KEY]

        myself = await self.client.request_json("/rest/api/3/myself")
        user = UserContext(
            account_id=myself.get("accountId", ""),
            timezone=myself.get("timeZone") or local_timezone_name(),
            display_name=myself.get("displayName") or "",
        )
        logger.debug("Refreshed user context for %s (%s)", user.display_name, user.timezone)
        self._users[_USER_KEY] = user
        return user

    async def story_points_field_id(self) -> str | None:
        if _FIELD_KEY in self._fields:
            return self._fields[_FIELD_KEY]

        fields = await self.client.request_json("/rest/api/3/field")
        field_id = match_story_points_field(fields or [])
        if field_id is None:
            logger.info("No story points field found in field catalog")
        self._fields[_FIELD_KEY] = field_id
        return field_id

    async def board_status_order(self, board_id: str | int) -> list[StatusRef]:
        """Board column order, or [] when the token lacks board scope.

        Callers fall back to alphabetical ordering on an empty list.
        """
        cache_key = str(board_id)
        if cache_key in self._boards:
            return self._boards[cache_key]

        try:
            config = await self.client.request_json(
                f"/rest/agile/1.0/board/{board_id}/configuration"
            )
        except ScopeMismatchError as e:
            logger.warning("Skipping board status order due to missing scopes: %s", e)
            return []
        except ApiError as e:
            if e.status != 403:
                raise
            logger.warning("Skipping board status order, access denied: %s", e)
            return []

        statuses = flatten_board_statuses(config)
        self._boards[cache_key] = statuses
        return statuses
