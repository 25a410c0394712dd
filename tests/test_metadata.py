"""Tests for per-project metadata resolution."""

import asyncio

from fakes import FakeBacklog

from backlog_sync.cache import CacheStore
from backlog_sync.config import AuthConfig
from backlog_sync.exceptions import BacklogApiError, BacklogConnectionError
from backlog_sync.metadata import MetadataResolver
from backlog_sync.models import Category, IssueType, ProjectInfo, ProjectStatus, User

CONFIG = AuthConfig(space_domain="example", api_key="key")


def _resolver() -> MetadataResolver:
    return MetadataResolver(CacheStore())


class TestNormalization:
    def test_statuses_sorted_by_display_order(self):
        backlog = FakeBacklog()
        backlog.statuses[1] = [
            {"id": 3, "name": "Closed", "displayOrder": 4000},
            {"id": 1, "name": "Open", "displayOrder": 1000},
            {"id": 2, "name": "In Progress"},
        ]

        statuses = asyncio.run(_resolver().statuses(backlog, 1))

        assert statuses == [
            ProjectStatus(2, "In Progress", 0),
            ProjectStatus(1, "Open", 1000),
            ProjectStatus(3, "Closed", 4000),
        ]

    def test_issue_types_sorted_by_order_then_name(self):
        backlog = FakeBacklog()
        backlog.issue_types[1] = [
            {"id": 1, "name": "Task", "color": "#7ea800", "displayOrder": 1},
            {"id": 2, "name": "Bug", "color": "#990000", "displayOrder": 0},
            {"id": 3, "name": "Another", "displayOrder": 1},
        ]

        issue_types = asyncio.run(_resolver().issue_types(backlog, 1))

        assert issue_types == [
            IssueType(2, "Bug", "#990000"),
            IssueType(3, "Another", None),
            IssueType(1, "Task", "#7ea800"),
        ]

    def test_issue_type_names_compare_without_case(self):
        backlog = FakeBacklog()
        backlog.issue_types[1] = [
            {"id": 1, "name": "Task", "displayOrder": 0},
            {"id": 2, "name": "bug", "displayOrder": 0},
            {"id": 3, "name": "Spike", "displayOrder": 0},
        ]

        issue_types = asyncio.run(_resolver().issue_types(backlog, 1))

        assert [t.name for t in issue_types] == ["bug", "Spike", "Task"]

    def test_users_sorted_by_id_and_categories_kept_in_order(self):
        backlog = FakeBacklog()
        backlog.users[1] = [{"id": 9, "name": "Zed"}, {"id": 2, "name": "Amy"}]
        backlog.categories[1] = [{"id": 5, "name": "UI"}, {"id": 1, "name": "API"}]
        resolver = _resolver()

        users = asyncio.run(resolver.users(backlog, 1))
        categories = asyncio.run(resolver.categories(backlog, 1))

        assert users == [User(2, "Amy"), User(9, "Zed")]
        assert categories == [Category(5, "UI"), Category(1, "API")]


class TestFallback:
    def test_failure_without_cache_gives_empty_list(self):
        backlog = FakeBacklog()
        backlog.failures[("list_statuses", 1)] = BacklogConnectionError("down")

        assert asyncio.run(_resolver().statuses(backlog, 1)) == []

    def test_failure_with_cache_gives_last_known_value(self):
        backlog = FakeBacklog()
        backlog.statuses[1] = [{"id": 1, "name": "Open", "displayOrder": 1}]
        resolver = _resolver()

        async def scenario():
            await resolver.statuses(backlog, 1)
            backlog.failures[("list_statuses", 1)] = BacklogApiError(500)
            return await resolver.statuses(backlog, 1, force=True)

        assert asyncio.run(scenario()) == [ProjectStatus(1, "Open", 1)]

    def test_project_info_placeholder(self):
        backlog = FakeBacklog()
        backlog.failures[("get_project", 42)] = BacklogConnectionError("down")

        info = asyncio.run(_resolver().project_info(backlog, 42))

        assert info == ProjectInfo(name="Project 42", project_key="42")


class TestAllProjectDetails:
    def _backlog(self) -> FakeBacklog:
        backlog = FakeBacklog(
            projects=[
                {"id": 1, "name": "Alpha", "projectKey": "A"},
                {"id": 2, "name": "Beta", "projectKey": "B"},
            ]
        )
        for pid in (1, 2):
            backlog.statuses[pid] = [{"id": pid * 10, "name": "Open", "displayOrder": 1}]
            backlog.users[pid] = [{"id": 1, "name": "Me"}]
        return backlog

    def test_one_broken_project_does_not_blank_others(self):
        backlog = self._backlog()
        backlog.failures[("list_statuses", 1)] = BacklogConnectionError("down")

        details = asyncio.run(_resolver().all_project_details(backlog, CONFIG))

        assert [d.project_id for d in details] == [1, 2]
        assert details[0].statuses == []
        assert details[1].statuses == [ProjectStatus(20, "Open", 1)]
        assert details[0].users == [User(1, "Me")]

    def test_tags_current_user_and_tolerates_its_failure(self):
        backlog = self._backlog()
        details = asyncio.run(_resolver().all_project_details(backlog, CONFIG))
        assert {d.current_user_id for d in details} == {1}

        broken = self._backlog()
        broken.failures["get_myself"] = BacklogConnectionError("down")
        details = asyncio.run(_resolver().all_project_details(broken, CONFIG))
        assert {d.current_user_id for d in details} == {None}

    def test_current_user_resolved_once(self):
        backlog = self._backlog()
        resolver = _resolver()

        async def scenario():
            await resolver.all_project_details(backlog, CONFIG)
            await resolver.all_project_details(backlog, CONFIG, force_refresh=True)

        asyncio.run(scenario())
        assert len(backlog.calls_to("get_myself")) == 1

    def test_force_refresh_bypasses_ttl(self):
        backlog = self._backlog()
        resolver = _resolver()

        async def scenario():
            await resolver.all_project_details(backlog, CONFIG)
            await resolver.all_project_details(backlog, CONFIG)
            await resolver.all_project_details(backlog, CONFIG, force_refresh=True)

        asyncio.run(scenario())
        assert len(backlog.calls_to("list_statuses")) == 4

    def test_skips_excluded_projects(self):
        backlog = self._backlog()
        config = AuthConfig(space_domain="example", api_key="key", excluded_projects=frozenset({"B"}))

        details = asyncio.run(_resolver().all_project_details(backlog, config))

        assert [d.name for d in details] == ["Alpha"]
        assert backlog.calls_to("list_statuses") == [("list_statuses", 1)]


PROJECT_LOOKUPS = ("list_statuses", "list_categories", "list_issue_types", "list_project_users")


class GatedBacklog(FakeBacklog):
    """Holds each per-project lookup until all four of them have started."""

    def __init__(self):
        super().__init__()
        self.started: list[str] = []
        self.all_started = asyncio.Event()

    async def _record(self, name: str, *args) -> None:
        await super()._record(name, *args)
        if name in PROJECT_LOOKUPS:
            self.started.append(name)
            if len(self.started) == len(PROJECT_LOOKUPS):
                self.all_started.set()
            await self.all_started.wait()


class TestProjectBundle:
    def test_four_lookups_run_concurrently(self):
        backlog = GatedBacklog()
        backlog.statuses[1] = [{"id": 1, "name": "Open", "displayOrder": 1}]
        backlog.categories[1] = [{"id": 2, "name": "UI"}]
        backlog.issue_types[1] = [{"id": 3, "name": "Task", "displayOrder": 0}]
        backlog.users[1] = [{"id": 4, "name": "Me"}]

        bundle = asyncio.run(asyncio.wait_for(_resolver().project_bundle(backlog, 1), timeout=2))

        assert sorted(backlog.started) == sorted(PROJECT_LOOKUPS)
        assert bundle.statuses == [ProjectStatus(1, "Open", 1)]
        assert bundle.categories == [Category(2, "UI")]
        assert bundle.issue_types == [IssueType(3, "Task", None)]
        assert bundle.users == [User(4, "Me")]

    def test_one_failing_lookup_keeps_the_rest(self):
        backlog = FakeBacklog()
        backlog.users[1] = [{"id": 4, "name": "Me"}]
        backlog.failures[("list_categories", 1)] = BacklogConnectionError("down")

        bundle = asyncio.run(_resolver().project_bundle(backlog, 1))

        assert bundle.categories == []
        assert bundle.users == [User(4, "Me")]
