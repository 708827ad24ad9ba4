"""Per-issue transition cache with a bounded-concurrency warm-up."""

import asyncio
import logging
from collections.abc import Iterable

from .jira import JiraClient
from .models import DEFAULT_STATUS_CATEGORY, StatusRef, Transition

logger = logging.getLogger(__name__)

PREFETCH_CONCURRENCY = 3


def order_transitions(
    transitions: list[Transition], status_order: list[StatusRef]
) -> list[Transition]:
    """Sort by board column position, then alphabetically by target name.

    With an empty board order every transition falls through to the
    alphabetical tiebreak.
    """
    positions: dict[str, int] = {}
    for index, status in enumerate(status_order):
        if status.id:
            positions.setdefault(status.id, index)
        if status.name:
            positions.setdefault(status.name, index)

    def sort_key(t: Transition) -> tuple[int, str]:
        name = t.to.name or t.name
        position = positions.get(t.to.id or "", positions.get(name, len(positions) + 1))
        return (position, name.lower())

    return sorted(transitions, key=sort_key)


class TransitionCache:
    """Memoized allowed-transitions lookup.

    Concurrent lookups for the same key share one in-flight request.
    """

    def __init__(self, client: JiraClient, concurrency: int = PREFETCH_CONCURRENCY):
        self.client = client
        self.concurrency = concurrency
        self._cache: dict[str, list[Transition]] = {}
        self._inflight: dict[str, asyncio.Task[list[Transition]]] = {}
        self._prefetch_task: asyncio.Task[None] | None = None

    def __contains__(self, issue_key: str) -> bool:
        return issue_key in self._cache

    def reset(self) -> None:
        """Forget cached and in-flight lookups (new sprint load)."""
        self._cache.clear()
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()
        if self._prefetch_task is not None and not self._prefetch_task.done():
            self._prefetch_task.cancel()
        self._prefetch_task = None

    def invalidate(self, issue_key: str) -> None:
        self._cache.pop(issue_key, None)

    async def _fetch(self, issue_key: str) -> list[Transition]:
        data = await self.client.request_json(f"/rest/api/3/issue/{issue_key}/transitions")
        transitions = [Transition.from_api(t) for t in (data or {}).get("transitions") or []]
        self._cache[issue_key] = transitions
        return transitions

    async def get(self, issue_key: str) -> list[Transition]:
        if issue_key in self._cache:
            return self._cache[issue_key]

        task = self._inflight.get(issue_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(issue_key))
            self._inflight[issue_key] = task

            def _done(_: asyncio.Future, key: str = issue_key) -> None:
                if self._inflight.get(key) is task:
                    del self._inflight[key]

            task.add_done_callback(_done)
        return await asyncio.shield(task)

    async def prefetch(self, issue_keys: Iterable[str]) -> None:
        """Warm the cache using a fixed pool of workers. Never raises."""
        queue: asyncio.Queue[str] = asyncio.Queue()
        for key in issue_keys:
            if key:
                queue.put_nowait(key)
        if queue.empty():
            return

        async def worker() -> None:
            while True:
                try:
                    key = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                if key in self._cache:
                    continue
                try:
                    await self.get(key)
                except Exception as e:
                    logger.debug("Transition prefetch for %s failed: %s", key, e)

        await asyncio.gather(*(worker() for _ in range(self.concurrency)))

    def start_prefetch(self, issue_keys: Iterable[str]) -> "asyncio.Task[None]":
        """Run ``prefetch`` in the background and keep a handle on it."""
        self._prefetch_task = asyncio.ensure_future(self.prefetch(list(issue_keys)))
        return self._prefetch_task

    async def wait_prefetch(self) -> None:
        if self._prefetch_task is not None:
            await self._prefetch_task

    async def transition_issue(
        self, issue_key: str, transition_id: str
    ) -> tuple[str, str]:
        """Apply a transition and read back the resulting status.

        Returns:
            (status name, status category color).
        """
        await self.client.send(
            "POST",
            f"/rest/api/3/issue/{issue_key}/transitions",
            json={"transition": {"id": str(transition_id)}},
        )
        self.invalidate(issue_key)
        issue = await self.client.request_json(
            f"/rest/api/3/issue/{issue_key}", params={"fields": "status"}
        )
        status = ((issue or {}).get("fields") or {}).get("status") or {}
        category = (status.get("statusCategory") or {}).get("colorName")
        return status.get("name") or "", category or DEFAULT_STATUS_CATEGORY
