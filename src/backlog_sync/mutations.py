"""Writes back to Backlog and the invalidation that follows them."""

import logging
import re
import time
from collections.abc import Awaitable, Callable
from datetime import date

from backlog_sync.backlog_client import BacklogClient
from backlog_sync.cache import BUCKET_SET, SINGLETON_KEY, CacheStore
from backlog_sync.exceptions import InvalidInputError
from backlog_sync.models import CreatedIssue, CreateIssueParams
from backlog_sync.storage import KeyValueStore

logger = logging.getLogger(__name__)

ISSUES_REVISION_KEY = "issuesRevision"
DEFAULT_PRIORITY_ID = 3  # "Normal"
DUE_DATE_COMMENT = "Updated due date"

# Backlog rejects a due date earlier than the start date with one of these.
START_DATE_CONSTRAINT_RE = re.compile(r'開始日|"code":7\b|start date|StartDate')


def require_positive_id(value, label: str) -> int:
    """Coerce an id to a positive int or raise InvalidInputError."""
    if isinstance(value, bool):
        raise InvalidInputError(f"Invalid {label}")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            raise InvalidInputError(f"Invalid {label}")
        value = int(value)
    if not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"Invalid {label}")
    return value


def require_date(value, label: str) -> str:
    """Validate a ``YYYY-MM-DD`` string and return it unchanged."""
    if not isinstance(value, str) or len(value) != 10:
        raise InvalidInputError(f"Invalid {label}")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise InvalidInputError(f"Invalid {label}")
    return value


class RevisionBroadcaster:
    """Publishes a strictly increasing millisecond timestamp after each write."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._last: int | None = None

    async def bump(self) -> int:
        now_ms = int(self._clock() * 1000)
        previous = self._last if self._last is not None else await self.current()
        revision = now_ms if previous is None else max(now_ms, previous + 1)
        await self._store.set(ISSUES_REVISION_KEY, revision)
        self._last = revision
        return revision

    async def current(self) -> int | None:
        return await self._store.get(ISSUES_REVISION_KEY)


class MutationCoordinator:
    """Validates and executes issue writes, then invalidates the bucket set.

    ``session`` resolves the configured client (checking config and host
    permission) and is only awaited once the input has been validated.
    """

    def __init__(
        self,
        cache: CacheStore,
        revisions: RevisionBroadcaster,
        session: Callable[[], Awaitable[BacklogClient]],
    ) -> None:
        self._cache = cache
        self._revisions = revisions
        self._session = session

    async def _after_write(self) -> None:
        self._cache.invalidate(BUCKET_SET, SINGLETON_KEY)
        revision = await self._revisions.bump()
        logger.debug("Bumped issues revision to %s", revision)

    async def update_issue_status(self, issue_id, status_id) -> None:
        issue_id = require_positive_id(issue_id, "issue id")
        status_id = require_positive_id(status_id, "status id")

        client = await self._session()
        try:
            await client.patch_issue(issue_id, {"statusId": status_id})
        except Exception as exc:
            logger.warning("Issue status update failed issue=%s status=%s: %s", issue_id, status_id, exc)
            raise
        logger.debug("Updated issue status issue=%s status=%s", issue_id, status_id)
        await self._after_write()

    async def update_issue_due_date(self, issue_id, due_date) -> None:
        """Set the due date, moving the start date along when Backlog requires it.

        Exactly one retry is made, and only for the start-date ordering error.
        """
        issue_id = require_positive_id(issue_id, "issue id")
        due_date = require_date(due_date, "due date")

        client = await self._session()
        try:
            await client.patch_issue(issue_id, {"dueDate": due_date}, comment=DUE_DATE_COMMENT)
        except Exception as exc:
            if not START_DATE_CONSTRAINT_RE.search(str(exc)):
                logger.warning("Issue due date update failed issue=%s: %s", issue_id, exc)
                raise
            logger.debug("Due date precedes start date for issue %s, moving start date", issue_id)
            await client.patch_issue(
                issue_id,
                {"dueDate": due_date, "startDate": due_date},
                comment=DUE_DATE_COMMENT,
            )
        logger.debug("Updated issue due date issue=%s due=%s", issue_id, due_date)
        await self._after_write()

    async def create_issue(self, params: CreateIssueParams) -> CreatedIssue:
        project_id = require_positive_id(params.project_id, "project id")
        issue_type_id = require_positive_id(params.issue_type_id, "issue type id")
        summary = (params.summary or "").strip()
        if not summary:
            raise InvalidInputError("Summary is required")

        form: dict = {
            "projectId": project_id,
            "issueTypeId": issue_type_id,
            "summary": summary,
            "priorityId": (
                require_positive_id(params.priority_id, "priority id")
                if params.priority_id
                else DEFAULT_PRIORITY_ID
            ),
        }
        if params.description:
            form["description"] = params.description
        if params.start_date:
            form["startDate"] = require_date(params.start_date, "start date")
        if params.due_date:
            form["dueDate"] = require_date(params.due_date, "due date")
        if params.category_id:
            form["categoryId[]"] = [require_positive_id(params.category_id, "category id")]
        if params.assignee_id:
            form["assigneeId"] = require_positive_id(params.assignee_id, "assignee id")

        client = await self._session()
        response = await client.create_issue(form)
        created = CreatedIssue(
            id=response["id"],
            issue_key=response["issueKey"],
            summary=response.get("summary", summary),
        )
        logger.debug("Created issue %s in project %s", created.issue_key, project_id)
        await self._after_write()
        return created
