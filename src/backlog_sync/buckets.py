"""Normalization and due-date bucketing of assigned issues."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo

from backlog_sync.models import Issue, ProjectInfo

logger = logging.getLogger(__name__)

# Backlog's built-in closed status is named "完了" in Japanese spaces.
COMPLETED_STATUS_KEYWORDS = ("完了",)
UNSET_STATUS_NAME = "Unset"


@dataclass
class Buckets:
    past: list[Issue] = field(default_factory=list)
    today: list[Issue] = field(default_factory=list)
    this_week: list[Issue] = field(default_factory=list)
    no_due: list[Issue] = field(default_factory=list)


def is_completed_status(status_name: str) -> bool:
    """Check whether a status name marks the issue as done."""
    if not status_name:
        return False
    normalized = status_name.strip()
    return any(keyword in normalized for keyword in COMPLETED_STATUS_KEYWORDS)


def normalize_due_date(value, tz: tzinfo | None = None) -> date | None:
    """Reduce a Backlog date or date-time to a local calendar date.

    Aware date-times are converted to ``tz`` (the system zone when None) and
    truncated to midnight there. Date-only strings are already calendar
    dates. Anything unparseable becomes None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value).strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(tz)
    return parsed.date()


def week_end(today: date) -> date:
    """The coming Sunday, or ``today`` itself on a Sunday."""
    return today + timedelta(days=(6 - today.weekday()) % 7)


def _created_sort_value(created: str) -> float:
    try:
        return datetime.fromisoformat(created).timestamp()
    except (TypeError, ValueError):
        return float("inf")


def _sort_key(issue: Issue) -> tuple[int, float]:
    return (issue.project_id, _created_sort_value(issue.created))


def resolve_project_id(raw: dict) -> int:
    project_id = raw.get("projectId")
    if isinstance(project_id, int) and not isinstance(project_id, bool):
        return project_id
    inline_id = (raw.get("project") or {}).get("id")
    if isinstance(inline_id, int) and not isinstance(inline_id, bool):
        return inline_id
    return 0


def resolve_project_name(
    project_id: int, inline_project: dict | None, info: ProjectInfo | None
) -> str:
    """Pick a display name: cached name, inline name, cached key, inline key, id."""
    inline_project = inline_project or {}
    return (
        (info.name if info else None)
        or inline_project.get("name")
        or (info.project_key if info else None)
        or inline_project.get("projectKey")
        or str(project_id)
    )


def normalize_issue(
    raw: dict,
    project_info_map: dict[int, ProjectInfo],
    base_url: str,
    tz: tzinfo | None = None,
) -> Issue:
    """Convert a raw Backlog issue payload to an ``Issue``."""
    project_id = resolve_project_id(raw)
    if not project_id:
        logger.warning(
            "Issue %s is missing its project id (project=%r)",
            raw.get("issueKey"),
            raw.get("project"),
        )

    status = raw.get("status") or {}
    categories = raw.get("category") or []
    category_name = ", ".join(c["name"] for c in categories if c.get("name")) or None

    return Issue(
        id=raw["id"],
        issue_key=raw.get("issueKey", ""),
        summary=raw.get("summary", ""),
        description=raw.get("description") or "",
        status=status.get("name") or UNSET_STATUS_NAME,
        status_id=status.get("id"),
        project_id=project_id,
        project_name=resolve_project_name(
            project_id, raw.get("project"), project_info_map.get(project_id)
        ),
        category_name=category_name,
        due_date=normalize_due_date(raw.get("dueDate"), tz),
        created=raw.get("created", ""),
        url=f"{base_url}/view/{raw.get('issueKey', '')}",
    )


def bucketize(
    issues: list[dict],
    project_info_map: dict[int, ProjectInfo],
    today: date,
    *,
    base_url: str,
    tz: tzinfo | None = None,
) -> Buckets:
    """Partition raw assigned issues into past/today/this week/no due date.

    Unassigned issues and completed issues are dropped first. Issues due after
    the end of the current week land in no bucket at all.
    """
    end_of_week = week_end(today)
    buckets = Buckets()

    for raw in issues:
        if not raw.get("assignee"):
            continue
        if is_completed_status((raw.get("status") or {}).get("name", "")):
            continue

        issue = normalize_issue(raw, project_info_map, base_url, tz)
        due = issue.due_date
        if due is None:
            buckets.no_due.append(issue)
        elif due < today:
            buckets.past.append(issue)
        elif due == today:
            buckets.today.append(issue)
        elif due <= end_of_week:
            buckets.this_week.append(issue)

    for bucket in (buckets.past, buckets.today, buckets.this_week, buckets.no_due):
        bucket.sort(key=_sort_key)

    return buckets
