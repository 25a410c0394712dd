"""Paged retrieval of the issues assigned to a user."""

import logging

from backlog_sync.backlog_client import MAX_PAGE_SIZE, BacklogClient

logger = logging.getLogger(__name__)


async def fetch_assigned_issues(client: BacklogClient, user_id: int, limit: int) -> list[dict]:
    """Collect up to ``limit`` raw issues assigned to ``user_id``.

    Pages are requested at increasing offsets until the limit is reached or a
    page comes back shorter than requested, which marks the end of the data.
    """
    issues: list[dict] = []
    offset = 0
    while len(issues) < limit:
        page_size = min(MAX_PAGE_SIZE, limit - len(issues))
        page = await client.list_assigned_issues(user_id, offset, page_size)
        issues.extend(page)
        if len(page) < page_size:
            break
        offset += len(page)

    logger.debug("Collected %d assigned issues for user %s", len(issues), user_id)
    return issues[:limit]
