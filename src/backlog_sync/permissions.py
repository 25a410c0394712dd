"""Host permission checks performed before any Backlog request."""

from collections.abc import Callable, Iterable
from typing import Protocol

from backlog_sync.config import AuthConfig, load_granted_origins
from backlog_sync.exceptions import PermissionDeniedError


class PermissionChecker(Protocol):
    async def contains(self, origin: str) -> bool: ...


class OriginPermissions:
    """Set of origins the user has granted access to.

    ``None`` grants every origin.
    """

    def __init__(self, origins: Iterable[str] | None = None) -> None:
        self._origins = None if origins is None else {_normalize(o) for o in origins}

    def grant(self, origin: str) -> None:
        if self._origins is not None:
            self._origins.add(_normalize(origin))

    def revoke(self, origin: str) -> None:
        if self._origins is None:
            self._origins = set()
        self._origins.discard(_normalize(origin))

    async def contains(self, origin: str) -> bool:
        if self._origins is None:
            return True
        return _normalize(origin) in self._origins


class FileOriginPermissions:
    """Origins granted under ``[permissions]`` in the config file.

    The file is re-read on every check, so edits apply without a restart.
    """

    def __init__(self, loader: Callable[[], list[str] | None] = load_granted_origins) -> None:
        self._loader = loader

    async def contains(self, origin: str) -> bool:
        return await OriginPermissions(self._loader()).contains(origin)


def _normalize(origin: str) -> str:
    return origin.rstrip("/*").rstrip("/").lower() + "/"


async def ensure_host_permission(config: AuthConfig, checker: PermissionChecker | None) -> None:
    """Raise PermissionDeniedError unless the space's origin is granted."""
    if checker is None:
        return
    if await checker.contains(config.origin):
        return
    raise PermissionDeniedError(
        f"Access to {config.origin} has not been granted. "
        "Add it to [permissions] origins in ~/.backlog-sync/config.toml."
    )
