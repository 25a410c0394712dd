"""Data models for Backlog sync."""

from dataclasses import dataclass
from datetime import date

from backlog_sync.exceptions import ErrorCode


@dataclass
class Issue:
    """An assigned issue, normalized for bucketing."""

    id: int
    issue_key: str
    summary: str
    description: str
    status: str
    status_id: int | None
    project_id: int
    project_name: str
    category_name: str | None
    due_date: date | None  # local calendar date, never a raw timestamp
    created: str
    url: str


@dataclass
class ProjectStatus:
    id: int
    name: str
    display_order: int


@dataclass
class Category:
    id: int
    name: str


@dataclass
class IssueType:
    id: int
    name: str
    color: str | None = None


@dataclass
class User:
    id: int
    name: str


@dataclass
class ProjectInfo:
    name: str
    project_key: str


@dataclass
class ProjectStatuses:
    """Statuses of one project, in display order."""

    project_id: int
    statuses: list[ProjectStatus]


@dataclass
class ProjectDetails:
    """Everything needed to create or edit issues in one project."""

    project_id: int
    name: str
    project_key: str
    statuses: list[ProjectStatus]
    categories: list[Category]
    issue_types: list[IssueType]
    users: list[User]
    current_user_id: int | None


@dataclass
class BucketSet:
    """Assigned issues partitioned by due date relative to today."""

    past: list[Issue]
    today: list[Issue]
    this_week: list[Issue]
    no_due: list[Issue]
    statuses: list[ProjectStatuses]
    fetched_at: str
    stale: bool = False
    error_code: ErrorCode | None = None
    error_message: str | None = None


@dataclass
class CreateIssueParams:
    project_id: int
    issue_type_id: int
    summary: str
    description: str | None = None
    start_date: str | None = None
    due_date: str | None = None
    category_id: int | None = None
    assignee_id: int | None = None
    priority_id: int | None = None


@dataclass
class CreatedIssue:
    id: int
    issue_key: str
    summary: str


def _date_str(d: date | None) -> str | None:
    return d.isoformat() if d else None


def issue_to_dict(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "issueKey": issue.issue_key,
        "summary": issue.summary,
        "description": issue.description,
        "status": issue.status,
        "statusId": issue.status_id,
        "projectId": issue.project_id,
        "projectName": issue.project_name,
        "categoryName": issue.category_name,
        "dueDate": _date_str(issue.due_date),
        "created": issue.created,
        "url": issue.url,
    }


def project_statuses_to_dict(bundle: ProjectStatuses) -> dict:
    return {
        "projectId": bundle.project_id,
        "statuses": [
            {"id": s.id, "name": s.name, "displayOrder": s.display_order}
            for s in bundle.statuses
        ],
    }


def bucket_set_to_dict(buckets: BucketSet) -> dict:
    """Convert a BucketSet to a JSON-serializable dict."""
    result = {
        "past": [issue_to_dict(i) for i in buckets.past],
        "today": [issue_to_dict(i) for i in buckets.today],
        "thisWeek": [issue_to_dict(i) for i in buckets.this_week],
        "noDue": [issue_to_dict(i) for i in buckets.no_due],
        "statuses": [project_statuses_to_dict(b) for b in buckets.statuses],
        "fetchedAt": buckets.fetched_at,
    }
    if buckets.stale:
        result["stale"] = True
    if buckets.error_code is not None:
        result["errorCode"] = buckets.error_code.value
        result["errorMessage"] = buckets.error_message
    return result


def project_details_to_dict(details: ProjectDetails) -> dict:
    return {
        "projectId": details.project_id,
        "name": details.name,
        "projectKey": details.project_key,
        "statuses": project_statuses_to_dict(
            ProjectStatuses(details.project_id, details.statuses)
        )["statuses"],
        "categories": [{"id": c.id, "name": c.name} for c in details.categories],
        "issueTypes": [
            {"id": t.id, "name": t.name, **({"color": t.color} if t.color else {})}
            for t in details.issue_types
        ],
        "users": [{"id": u.id, "name": u.name} for u in details.users],
        "currentUserId": details.current_user_id,
    }


def created_issue_to_dict(issue: CreatedIssue) -> dict:
    return {"id": issue.id, "issueKey": issue.issue_key, "summary": issue.summary}
