"""Lock-guarded snapshot/version pair owned by the relay."""

from __future__ import annotations

import asyncio
import contextlib
import copy
from collections.abc import AsyncIterator
from typing import Any


class SnapshotStore:
    """Last accepted snapshot plus a monotonically increasing version.

    The payload is stored exactly as received: last write wins and every
    write is a full replacement. Callers that need to read and write in
    one step (replace then fan out) hold :meth:`locked` for the duration.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._snapshot: Any = None
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    @contextlib.asynccontextmanager
    async def locked(self) -> AsyncIterator[SnapshotStore]:
        """Hold the store lock; use :meth:`replace_locked` / :meth:`current_locked` inside."""
        async with self._lock:
            yield self

    def replace_locked(self, payload: Any) -> int:
        """Store *payload* and bump the version. Caller must hold :meth:`locked`."""
        if not self._lock.locked():
            raise RuntimeError("SnapshotStore.replace_locked called without holding the lock")
        self._snapshot = copy.deepcopy(payload)
        self._version += 1
        return self._version

    def current_locked(self) -> tuple[Any, int]:
        """Return ``(snapshot, version)``. Caller must hold :meth:`locked`."""
        if not self._lock.locked():
            raise RuntimeError("SnapshotStore.current_locked called without holding the lock")
        return self._snapshot, self._version

    async def replace(self, payload: Any) -> int:
        async with self._lock:
            return self.replace_locked(payload)

    async def current(self) -> tuple[Any, int]:
        async with self._lock:
            return self.current_locked()
