"""Tests for due-date normalization and bucketing."""

from datetime import date, timedelta, timezone

from fakes import make_raw_issue

from backlog_sync.buckets import (
    bucketize,
    is_completed_status,
    normalize_due_date,
    normalize_issue,
    resolve_project_name,
    week_end,
)
from backlog_sync.models import ProjectInfo

BASE_URL = "https://example.backlog.com"
MONDAY = date(2024, 6, 10)


def _keys(bucket):
    return [issue.issue_key for issue in bucket]


class TestNormalizeDueDate:
    """Tests for normalize_due_date helper."""

    def test_parses_iso_date(self):
        assert normalize_due_date("2024-06-10") == date(2024, 6, 10)

    def test_truncates_naive_datetime(self):
        assert normalize_due_date("2024-06-10T23:59:59") == date(2024, 6, 10)

    def test_converts_aware_datetime_to_target_zone(self):
        tokyo = timezone(timedelta(hours=9))
        assert normalize_due_date("2024-06-09T15:00:00Z", tz=tokyo) == date(2024, 6, 10)
        assert normalize_due_date("2024-06-09T15:00:00Z", tz=timezone.utc) == date(2024, 6, 9)

    def test_returns_none_for_missing_value(self):
        assert normalize_due_date(None) is None
        assert normalize_due_date("") is None

    def test_returns_none_for_invalid_value(self):
        assert normalize_due_date("not-a-date") is None
        assert normalize_due_date("2024-13-45") is None


class TestWeekEnd:
    def test_monday_ends_on_sunday(self):
        assert week_end(MONDAY) == date(2024, 6, 16)

    def test_saturday_ends_next_day(self):
        assert week_end(date(2024, 6, 15)) == date(2024, 6, 16)

    def test_sunday_is_its_own_week_end(self):
        assert week_end(date(2024, 6, 16)) == date(2024, 6, 16)


class TestIsCompletedStatus:
    def test_matches_keyword_substring(self):
        assert is_completed_status("完了")
        assert is_completed_status(" 完了済み ")

    def test_other_statuses_are_open(self):
        assert not is_completed_status("処理中")
        assert not is_completed_status("")


class TestResolveProjectName:
    """Name priority: cached name, inline name, cached key, inline key, id."""

    def test_prefers_cached_name(self):
        info = ProjectInfo(name="Cached", project_key="CK")
        assert resolve_project_name(5, {"name": "Inline"}, info) == "Cached"

    def test_falls_back_to_inline_name(self):
        info = ProjectInfo(name="", project_key="CK")
        assert resolve_project_name(5, {"name": "Inline", "projectKey": "IK"}, info) == "Inline"

    def test_falls_back_to_cached_key_then_inline_key(self):
        assert resolve_project_name(5, {"projectKey": "IK"}, ProjectInfo("", "CK")) == "CK"
        assert resolve_project_name(5, {"projectKey": "IK"}, None) == "IK"

    def test_falls_back_to_id(self):
        assert resolve_project_name(5, None, None) == "5"


class TestNormalizeIssue:
    def test_builds_issue_fields(self):
        raw = make_raw_issue(7, due_date="2024-06-12T00:00:00", project_id=3)
        raw["category"] = [{"id": 1, "name": "UI"}, {"id": 2, "name": "API"}]

        issue = normalize_issue(raw, {3: ProjectInfo("Three", "THR")}, BASE_URL)

        assert issue.id == 7
        assert issue.project_name == "Three"
        assert issue.category_name == "UI, API"
        assert issue.due_date == date(2024, 6, 12)
        assert issue.status_id == 10
        assert issue.url == f"{BASE_URL}/view/PRJ-7"

    def test_missing_status_gets_placeholder_name(self):
        issue = normalize_issue(make_raw_issue(1, status=None), {}, BASE_URL)
        assert issue.status == "Unset"
        assert issue.status_id is None
        assert issue.category_name is None

    def test_nameless_categories_are_skipped(self):
        raw = make_raw_issue(1)
        raw["category"] = [{"id": 1, "name": None}, {"id": 2}, {"id": 3, "name": "API"}]
        assert normalize_issue(raw, {}, BASE_URL).category_name == "API"

        raw["category"] = [{"id": 1, "name": None}]
        assert normalize_issue(raw, {}, BASE_URL).category_name is None

    def test_project_id_falls_back_to_inline_project(self):
        raw = make_raw_issue(1, project_id=4)
        del raw["projectId"]
        assert normalize_issue(raw, {}, BASE_URL).project_id == 4


class TestBucketize:
    """Tests for bucketize with a fixed Monday."""

    def test_classifies_by_due_date(self):
        issues = [
            make_raw_issue(1, "2024-06-09"),
            make_raw_issue(2, "2024-06-10"),
            make_raw_issue(3, "2024-06-16"),
            make_raw_issue(4, "2024-06-17"),
            make_raw_issue(5, None),
        ]

        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)

        assert _keys(buckets.past) == ["PRJ-1"]
        assert _keys(buckets.today) == ["PRJ-2"]
        assert _keys(buckets.this_week) == ["PRJ-3"]
        assert _keys(buckets.no_due) == ["PRJ-5"]

    def test_issue_beyond_week_end_is_in_no_bucket(self):
        buckets = bucketize([make_raw_issue(4, "2024-06-17")], {}, MONDAY, base_url=BASE_URL)
        assert not (buckets.past or buckets.today or buckets.this_week or buckets.no_due)

    def test_invalid_due_date_counts_as_no_due(self):
        buckets = bucketize([make_raw_issue(1, "garbage")], {}, MONDAY, base_url=BASE_URL)
        assert _keys(buckets.no_due) == ["PRJ-1"]

    def test_completed_issue_excluded_even_when_due_today(self):
        issues = [make_raw_issue(1, "2024-06-10", status="完了")]
        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)
        assert buckets.today == []

    def test_unassigned_issue_excluded(self):
        issues = [make_raw_issue(1, "2024-06-10", assigned=False)]
        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)
        assert buckets.today == []

    def test_sorts_by_project_then_created(self):
        issues = [
            make_raw_issue(1, "2024-06-10", project_id=5, created="2024-01-01T00:00:00"),
            make_raw_issue(2, "2024-06-10", project_id=3, created="2024-03-01T00:00:00"),
            make_raw_issue(3, "2024-06-10", project_id=3, created="2024-02-01T00:00:00"),
        ]

        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)

        assert [(i.project_id, i.id) for i in buckets.today] == [(3, 3), (3, 2), (5, 1)]

    def test_unparseable_created_sorts_last_within_project(self):
        issues = [
            make_raw_issue(1, None, created="unknown"),
            make_raw_issue(2, None, created="2024-02-01T00:00:00"),
        ]
        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)
        assert [i.id for i in buckets.no_due] == [2, 1]

    def test_buckets_are_disjoint(self):
        issues = [make_raw_issue(i, f"2024-06-{d:02d}") for i, d in enumerate(range(5, 20), 1)]
        buckets = bucketize(issues, {}, MONDAY, base_url=BASE_URL)

        seen = _keys(buckets.past) + _keys(buckets.today) + _keys(buckets.this_week)
        assert len(seen) == len(set(seen))
        # 06-05..06-16 bucketed, 06-17..06-19 beyond the week
        assert len(seen) == 12
