"""Issue synchronization service: the operations exposed to callers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import date, datetime, timezone

from backlog_sync.backlog_client import BacklogClient
from backlog_sync.buckets import bucketize, resolve_project_id
from backlog_sync.cache import BUCKET_SET, SINGLETON_KEY, CacheStore
from backlog_sync.config import AuthConfig
from backlog_sync.exceptions import ErrorCode, MissingConfigError, classify_error
from backlog_sync.metadata import MetadataResolver
from backlog_sync.models import (
    BucketSet,
    CreatedIssue,
    CreateIssueParams,
    ProjectDetails,
    ProjectInfo,
    ProjectStatuses,
)
from backlog_sync.mutations import MutationCoordinator, RevisionBroadcaster, require_positive_id
from backlog_sync.paginator import fetch_assigned_issues
from backlog_sync.permissions import PermissionChecker, ensure_host_permission
from backlog_sync.storage import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], Awaitable[AuthConfig | None]]

MISSING_CONFIG_MESSAGE = (
    "Backlog API key is not configured. Create ~/.backlog-sync/config.toml to set up."
)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IssueSyncService:
    """Keeps the bucketed view of assigned issues fresh and mediates writes.

    One instance owns one cache; every component receives it explicitly.
    A config different from the previous one clears all caches before use.
    """

    def __init__(
        self,
        config_provider: ConfigProvider,
        *,
        permissions: PermissionChecker | None = None,
        store: KeyValueStore | None = None,
        cache: CacheStore | None = None,
        client_factory: Callable[[AuthConfig], BacklogClient] = BacklogClient,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._config_provider = config_provider
        self._permissions = permissions
        self._client_factory = client_factory
        self._today = today
        self._cache = cache or CacheStore()
        self._metadata = MetadataResolver(self._cache)
        self._revisions = RevisionBroadcaster(store or MemoryStore())
        self._mutations = MutationCoordinator(self._cache, self._revisions, self._client)
        self._config: AuthConfig | None = None
        self._backlog: BacklogClient | None = None

    @property
    def cache(self) -> CacheStore:
        return self._cache

    async def _session(self) -> tuple[AuthConfig, BacklogClient]:
        """Resolve config, swap clients on config change, check host permission."""
        config = await self._config_provider()
        if config is None:
            raise MissingConfigError(MISSING_CONFIG_MESSAGE)

        if config != self._config or self._backlog is None:
            if self._config is not None:
                logger.info("Backlog configuration changed, clearing caches")
                self.clear_cache()
            previous = self._backlog
            self._config = config
            self._backlog = self._client_factory(config)
            if previous is not None:
                await previous.aclose()

        await ensure_host_permission(config, self._permissions)
        return config, self._backlog

    async def _client(self) -> BacklogClient:
        _, client = await self._session()
        return client

    def clear_cache(self) -> None:
        """Reset every cache, including the current-user memo."""
        self._cache.clear()

    async def aclose(self) -> None:
        if self._backlog is not None:
            await self._backlog.aclose()
            self._backlog = None
            self._config = None

    async def request_bucket_set(self, force_refresh: bool = False) -> BucketSet:
        """Return the assigned issues bucketed by due date.

        Serves the cached set while it is fresh. When a refresh fails the last
        good set is returned marked stale, except for a missing configuration,
        which always yields an empty set carrying the error code.
        """
        try:
            config, client = await self._session()
            entry = self._cache.get(BUCKET_SET, SINGLETON_KEY)
            if not force_refresh and self._cache.is_fresh(entry):
                return entry.data
            return await self._cache.share(
                BUCKET_SET, SINGLETON_KEY, lambda: self._load_bucket_set(config, client)
            )
        except Exception as exc:
            code = classify_error(exc)
            message = str(exc)
            logger.warning("Bucket set refresh failed (%s): %s", code.value, message)

            fallback = self._cache.get(BUCKET_SET, SINGLETON_KEY)
            if code is ErrorCode.MISSING_CONFIG or fallback is None:
                return self._empty_bucket_set(code, message)
            return replace(fallback.data, stale=True, error_code=code, error_message=message)

    def _empty_bucket_set(self, code: ErrorCode, message: str) -> BucketSet:
        return BucketSet(
            past=[],
            today=[],
            this_week=[],
            no_due=[],
            statuses=self._metadata.cached_statuses(),
            fetched_at=_utc_now_iso(),
            error_code=code,
            error_message=message,
        )

    async def _load_bucket_set(self, config: AuthConfig, client: BacklogClient) -> BucketSet:
        user = await self._metadata.current_user(client)
        raw_issues = await fetch_assigned_issues(client, user.id, config.issue_fetch_limit)
        raw_issues = [
            issue
            for issue in raw_issues
            if not config.is_excluded(
                resolve_project_id(issue), (issue.get("project") or {}).get("projectKey")
            )
        ]

        project_ids = list(dict.fromkeys(pid for pid in map(resolve_project_id, raw_issues) if pid > 0))
        logger.debug("Resolved project ids from issues: %s", project_ids)

        status_bundles: list[ProjectStatuses] = []
        project_info_map: dict[int, ProjectInfo] = {}
        for project_id in project_ids:
            statuses, info = await asyncio.gather(
                self._metadata.statuses(client, project_id),
                self._metadata.project_info(client, project_id),
            )
            status_bundles.append(ProjectStatuses(project_id, statuses))
            project_info_map[project_id] = info

        buckets = bucketize(raw_issues, project_info_map, self._today(), base_url=config.base_url)
        return BucketSet(
            past=buckets.past,
            today=buckets.today,
            this_week=buckets.this_week,
            no_due=buckets.no_due,
            statuses=status_bundles,
            fetched_at=_utc_now_iso(),
        )

    async def request_project_statuses(self, project_id) -> ProjectStatuses:
        project_id = require_positive_id(project_id, "project id")
        client = await self._client()
        return ProjectStatuses(project_id, await self._metadata.statuses(client, project_id))

    async def request_all_project_details(self, force_refresh: bool = False) -> list[ProjectDetails]:
        config, client = await self._session()
        return await self._metadata.all_project_details(client, config, force_refresh)

    async def update_issue_status(self, issue_id, status_id) -> None:
        await self._mutations.update_issue_status(issue_id, status_id)

    async def update_issue_due_date(self, issue_id, due_date) -> None:
        await self._mutations.update_issue_due_date(issue_id, due_date)

    async def create_issue(self, params: CreateIssueParams) -> CreatedIssue:
        return await self._mutations.create_issue(params)

    async def current_revision(self) -> int | None:
        return await self._revisions.current()
