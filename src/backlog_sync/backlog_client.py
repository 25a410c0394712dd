"""Backlog API v2 client with retry logic."""

import logging
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from backlog_sync.config import AuthConfig
from backlog_sync.exceptions import (
    BacklogApiError,
    BacklogConnectionError,
    RateLimitError,
    RequestDeniedError,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
REQUEST_TIMEOUT_SECONDS = 15.0

Params = dict[str, Any]


class BacklogClient:
    """Client for interacting with the Backlog REST API.

    Every request carries the API key as the ``apiKey`` query parameter.
    """

    def __init__(self, config: AuthConfig, http: httpx.AsyncClient | None = None) -> None:
        """Initialize Backlog client with configuration."""
        self.config = config
        self._http = http
        self._owns_http = http is None

    def _get_http(self) -> httpx.AsyncClient:
        """Get or create the underlying HTTP client."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    @retry(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=60),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        params: Params | None = None,
        data: Params | None = None,
    ) -> Any:
        """Send one API request and decode the JSON body.

        Raises:
            RateLimitError: If rate limited (will be retried)
            RequestDeniedError: If the API key is rejected
            BacklogApiError: For other non-success responses
            BacklogConnectionError: If the server cannot be reached
        """
        query: Params = {"apiKey": self.config.api_key}
        for key, value in (params or {}).items():
            if value is not None:
                query[key] = value

        url = f"{self.config.base_url}{path}"
        try:
            response = await self._get_http().request(method, url, params=query, data=data)
        except httpx.TimeoutException as e:
            raise BacklogConnectionError(
                f"Timed out talking to Backlog at {self.config.base_url}."
            ) from e
        except httpx.RequestError as e:
            raise BacklogConnectionError(
                f"Cannot connect to Backlog at {self.config.base_url}. "
                "Check the space domain and your network connection."
            ) from e

        if response.status_code == 429:
            raise RateLimitError(429, "Rate limited by Backlog. Retrying with exponential backoff...")
        if response.status_code == 401:
            raise RequestDeniedError(
                "Authentication failed. Check your Backlog API key."
            )
        if response.is_error:
            logger.warning("Backlog %s %s failed with %s", method, path, response.status_code)
            raise BacklogApiError(response.status_code, response.text)

        if not response.content:
            return None
        return response.json()

    async def get_myself(self) -> dict:
        return await self._request("GET", "/api/v2/users/myself")

    async def list_projects(self) -> list[dict]:
        return await self._request("GET", "/api/v2/projects")

    async def get_project(self, project_id: int) -> dict:
        return await self._request("GET", f"/api/v2/projects/{project_id}")

    async def list_statuses(self, project_id: int) -> list[dict]:
        return await self._request("GET", f"/api/v2/projects/{project_id}/statuses")

    async def list_categories(self, project_id: int) -> list[dict]:
        return await self._request("GET", f"/api/v2/projects/{project_id}/categories")

    async def list_issue_types(self, project_id: int) -> list[dict]:
        return await self._request("GET", f"/api/v2/projects/{project_id}/issueTypes")

    async def list_project_users(self, project_id: int) -> list[dict]:
        return await self._request("GET", f"/api/v2/projects/{project_id}/users")

    async def list_assigned_issues(self, assignee_id: int, offset: int, count: int) -> list[dict]:
        """List issues assigned to a user, newest due date first.

        ``count`` is clamped to the API page limit and ``offset`` is only sent
        when non-zero.
        """
        params: Params = {
            "assigneeId[]": [assignee_id],
            "sort": "dueDate",
            "order": "desc",
            "count": max(1, min(count, MAX_PAGE_SIZE)),
        }
        if offset > 0:
            params["offset"] = offset

        issues = await self._request("GET", "/api/v2/issues", params=params)
        logger.debug(
            "Fetched issues count=%d projectIds=%s",
            len(issues),
            sorted({issue.get("projectId") for issue in issues if issue.get("projectId")}),
        )
        return issues

    async def create_issue(self, form: Params) -> dict:
        return await self._request("POST", "/api/v2/issues", data=form)

    async def patch_issue(self, issue_id: int, form: Params, comment: str | None = None) -> dict:
        """Update issue fields with an optional audit comment."""
        body = dict(form)
        if comment:
            body["comment"] = comment
        logger.debug("Updating issue %s with %s", issue_id, sorted(body))
        return await self._request("PATCH", f"/api/v2/issues/{issue_id}", data=body)
