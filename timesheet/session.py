"""Per-login session: owns the HTTP client, caches and engines."""

import logging
from typing import Any

from .cache import MetadataCache
from .config import ApiContext, Settings
from .issues import IssueEditor
from .jira import JiraClient
from .models import SprintLoad, Transition, UserContext
from .sprint import IssueCallback, LoadGenerations, SprintAggregator
from .transitions import TransitionCache, order_transitions
from .worklogs import WorklogReconciler

logger = logging.getLogger(__name__)


class Session:
    """Everything tied to one set of credentials.

    Caches are owned here rather than at module level so logging out (or
    switching accounts) drops them together with the API context.
    """

    def __init__(self, settings: Settings, **client_kwargs: Any):
        self.settings = settings
        self.context = ApiContext.from_settings(settings)
        self.client = JiraClient(self.context, **client_kwargs)
        self.cache = MetadataCache(self.client)
        self.aggregator = SprintAggregator(self.client, self.cache)
        self.reconciler = WorklogReconciler(self.client, self.cache)
        self.transitions = TransitionCache(self.client)
        self.issues = IssueEditor(self.client, self.cache)
        self.generations = LoadGenerations()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.logout()

    async def login(self) -> UserContext:
        """Verify credentials against Jira and return the user."""
        user = await self.cache.user_context()
        logger.info("Logged in as %s", user.display_name or self.settings.email)
        return user

    async def load_sprint(self, *, on_issue: IssueCallback | None = None) -> SprintLoad:
        """Start a new load generation and run the staged sprint load.

        Any earlier load still running is superseded and will raise
        LoadCancelled at its next checkpoint.
        """
        board_id = self.settings.require_board_id()
        token = self.generations.begin()
        self.transitions.reset()
        return await self.aggregator.load(
            board_id, token, on_issue=on_issue, prefetcher=self.transitions
        )

    async def sprint_overview(self) -> SprintLoad:
        """Sprint, day keys and issues without worklogs."""
        return await self.aggregator.load_issues(self.settings.require_board_id())

    async def ordered_transitions(self, issue_key: str) -> list[Transition]:
        """Allowed transitions in board column order (alphabetical fallback)."""
        transitions = await self.transitions.get(issue_key)
        status_order = []
        if self.settings.board_id:
            status_order = await self.cache.board_status_order(self.settings.board_id)
        return order_transitions(transitions, status_order)

    async def logout(self) -> None:
        """Drop every cache and close the client; the session is unusable after."""
        self.generations.begin()
        self.transitions.reset()
        self.cache.clear()
        if not self.client.is_closed:
            await self.client.aclose()
