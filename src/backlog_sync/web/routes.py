"""HTTP route handlers for the Backlog sync JSON API."""

from flask import Blueprint, current_app, jsonify, request

from backlog_sync.config import config_exists
from backlog_sync.exceptions import (
    BacklogApiError,
    BacklogConnectionError,
    BacklogSyncError,
    InvalidConfigError,
    InvalidInputError,
    MissingConfigError,
    PermissionDeniedError,
    RequestDeniedError,
)
from backlog_sync.models import (
    CreateIssueParams,
    bucket_set_to_dict,
    created_issue_to_dict,
    project_details_to_dict,
    project_statuses_to_dict,
)

bp = Blueprint("main", __name__)


def _run(coro):
    runner = current_app.extensions["backlog_sync_runner"]
    return runner.run(coro)


def _service():
    return current_app.extensions["backlog_sync"]


def _force_flag() -> bool:
    return request.args.get("force", "").lower() in ("1", "true", "yes")


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@bp.errorhandler(BacklogSyncError)
def handle_sync_error(e: BacklogSyncError):
    """Translate sync errors into JSON error responses."""
    if isinstance(e, InvalidInputError):
        return _error(str(e), 400)
    if isinstance(e, RequestDeniedError):
        return _error(str(e), 401)
    if isinstance(e, PermissionDeniedError):
        return _error(str(e), 403)
    if isinstance(e, (MissingConfigError, InvalidConfigError)):
        return _error(str(e), 503)
    if isinstance(e, BacklogConnectionError):
        return _error(str(e), 503)
    if isinstance(e, BacklogApiError):
        return _error(str(e), 502)
    return _error(str(e), 500)


@bp.route("/health")
def health():
    """Health check endpoint."""
    config_loaded = config_exists()
    if config_loaded:
        return jsonify({"status": "ok", "config_loaded": True})
    else:
        return jsonify({
            "status": "error",
            "config_loaded": False,
            "message": "Configuration not found",
        }), 503


@bp.route("/api/issues")
def list_issues():
    """Bucketed assigned issues, possibly stale."""
    buckets = _run(_service().request_bucket_set(_force_flag()))
    return jsonify(bucket_set_to_dict(buckets))


@bp.route("/api/projects")
def list_projects():
    details = _run(_service().request_all_project_details(_force_flag()))
    return jsonify([project_details_to_dict(d) for d in details])


@bp.route("/api/projects/<project_id>/statuses")
def project_statuses(project_id: str):
    bundle = _run(_service().request_project_statuses(project_id))
    return jsonify(project_statuses_to_dict(bundle))


@bp.route("/api/issues/<issue_id>/status", methods=["PATCH"])
def update_status(issue_id: str):
    payload = request.get_json(silent=True) or {}
    _run(_service().update_issue_status(issue_id, payload.get("statusId")))
    return jsonify({"ok": True})


@bp.route("/api/issues/<issue_id>/due-date", methods=["PATCH"])
def update_due_date(issue_id: str):
    payload = request.get_json(silent=True) or {}
    _run(_service().update_issue_due_date(issue_id, payload.get("dueDate")))
    return jsonify({"ok": True})


def _optional_id(value):
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _optional_text(value):
    return value if isinstance(value, str) and value else None


@bp.route("/api/issues", methods=["POST"])
def create_issue():
    """Create an issue from a JSON payload."""
    payload = request.get_json(silent=True) or {}
    params = CreateIssueParams(
        project_id=payload.get("projectId"),
        issue_type_id=payload.get("issueTypeId"),
        summary=str(payload.get("summary") or ""),
        description=_optional_text(payload.get("description")),
        start_date=_optional_text(payload.get("startDate")),
        due_date=_optional_text(payload.get("dueDate")),
        category_id=_optional_id(payload.get("categoryId")),
        assignee_id=_optional_id(payload.get("assigneeId")),
        priority_id=_optional_id(payload.get("priorityId")),
    )
    issue = _run(_service().create_issue(params))
    return jsonify({"ok": True, "issue": created_issue_to_dict(issue)}), 201


@bp.route("/api/cache/clear", methods=["POST"])
def clear_cache():
    service = _service()

    async def _clear():
        service.clear_cache()

    _run(_clear())
    return jsonify({"ok": True})


@bp.route("/api/revision")
def revision():
    return jsonify({"revision": _run(_service().current_revision())})
