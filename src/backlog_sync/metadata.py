"""Per-project metadata resolution.

Statuses, categories, issue types, users and project info are cached
independently per project. A failed fetch never reaches the caller: it falls
back to the last cached value for that project, or an empty/placeholder
value, so one broken project cannot blank out the others.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from backlog_sync.backlog_client import BacklogClient
from backlog_sync.cache import (
    CATEGORIES,
    CURRENT_USER,
    ISSUE_TYPES,
    PROJECT_INFO,
    SINGLETON_KEY,
    STATUSES,
    USERS,
    CacheStore,
)
from backlog_sync.config import AuthConfig
from backlog_sync.models import (
    Category,
    IssueType,
    ProjectDetails,
    ProjectInfo,
    ProjectStatus,
    ProjectStatuses,
    User,
)

logger = logging.getLogger(__name__)


def _parse_statuses(response: list[dict]) -> list[ProjectStatus]:
    statuses = [
        ProjectStatus(id=s["id"], name=s["name"], display_order=s.get("displayOrder") or 0)
        for s in response
    ]
    return sorted(statuses, key=lambda s: s.display_order)


def _parse_categories(response: list[dict]) -> list[Category]:
    return [Category(id=c["id"], name=c["name"]) for c in response]


def _parse_issue_types(response: list[dict]) -> list[IssueType]:
    ordered = sorted(
        response,
        key=lambda t: (t.get("displayOrder") or 0, t["name"].casefold(), t["name"]),
    )
    return [IssueType(id=t["id"], name=t["name"], color=t.get("color")) for t in ordered]


def _parse_users(response: list[dict]) -> list[User]:
    return sorted((User(id=u["id"], name=u["name"]) for u in response), key=lambda u: u.id)


@dataclass
class ProjectBundle:
    statuses: list[ProjectStatus]
    categories: list[Category]
    issue_types: list[IssueType]
    users: list[User]


def placeholder_project_info(project_id: int) -> ProjectInfo:
    return ProjectInfo(name=f"Project {project_id}", project_key=str(project_id))


class MetadataResolver:
    """Resolves and caches per-project metadata with stale-or-empty fallback."""

    def __init__(self, cache: CacheStore):
        self._cache = cache

    async def statuses(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> list[ProjectStatus]:
        async def fetch() -> list[ProjectStatus]:
            response = await client.list_statuses(project_id)
            logger.debug("Fetched project statuses project=%s count=%d", project_id, len(response))
            return _parse_statuses(response)

        return await self._cache.get_or_fetch(
            STATUSES, project_id, fetch, default=list, force=force
        )

    async def categories(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> list[Category]:
        async def fetch() -> list[Category]:
            return _parse_categories(await client.list_categories(project_id))

        return await self._cache.get_or_fetch(
            CATEGORIES, project_id, fetch, default=list, force=force
        )

    async def issue_types(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> list[IssueType]:
        async def fetch() -> list[IssueType]:
            return _parse_issue_types(await client.list_issue_types(project_id))

        return await self._cache.get_or_fetch(
            ISSUE_TYPES, project_id, fetch, default=list, force=force
        )

    async def users(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> list[User]:
        async def fetch() -> list[User]:
            return _parse_users(await client.list_project_users(project_id))

        return await self._cache.get_or_fetch(
            USERS, project_id, fetch, default=list, force=force
        )

    async def project_info(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> ProjectInfo:
        async def fetch() -> ProjectInfo:
            response = await client.get_project(project_id)
            return ProjectInfo(name=response["name"], project_key=response["projectKey"])

        return await self._cache.get_or_fetch(
            PROJECT_INFO,
            project_id,
            fetch,
            default=lambda: placeholder_project_info(project_id),
            force=force,
        )

    async def project_bundle(
        self, client: BacklogClient, project_id: int, force: bool = False
    ) -> ProjectBundle:
        """Statuses, categories, issue types and users of one project, fetched concurrently."""
        statuses, categories, issue_types, users = await asyncio.gather(
            self.statuses(client, project_id, force),
            self.categories(client, project_id, force),
            self.issue_types(client, project_id, force),
            self.users(client, project_id, force),
        )
        return ProjectBundle(statuses, categories, issue_types, users)

    async def current_user(self, client: BacklogClient) -> User:
        """The authenticated user, fetched once per cache lifetime.

        Unlike the per-project lookups, failures propagate.
        """

        async def fetch() -> User:
            response = await client.get_myself()
            return User(id=response["id"], name=response.get("name", ""))

        return await self._cache.memoize(CURRENT_USER, SINGLETON_KEY, fetch)

    def cached_statuses(self, project_ids: Iterable[int] | None = None) -> list[ProjectStatuses]:
        """Statuses already in the cache, for every project when no ids are given."""
        ids = list(project_ids) if project_ids else self._cache.keys(STATUSES)
        found = []
        for project_id in ids:
            entry = self._cache.get(STATUSES, project_id)
            if entry is not None:
                found.append(ProjectStatuses(project_id, entry.data))
        return found

    async def all_project_details(
        self, client: BacklogClient, config: AuthConfig, force_refresh: bool = False
    ) -> list[ProjectDetails]:
        """Metadata bundles for every visible project.

        Projects are resolved one after another; the four lookups of a single
        project run concurrently.
        """
        try:
            current_user_id: int | None = (await self.current_user(client)).id
        except Exception as exc:
            logger.warning("Could not resolve current user: %s", exc)
            current_user_id = None

        projects = await client.list_projects()
        details: list[ProjectDetails] = []

        for project in projects:
            project_id = project["id"]
            if config.is_excluded(project_id, project.get("projectKey")):
                continue
            bundle = await self.project_bundle(client, project_id, force_refresh)
            details.append(
                ProjectDetails(
                    project_id=project_id,
                    name=project["name"],
                    project_key=project["projectKey"],
                    statuses=bundle.statuses,
                    categories=bundle.categories,
                    issue_types=bundle.issue_types,
                    users=bundle.users,
                    current_user_id=current_user_id,
                )
            )

        return details
