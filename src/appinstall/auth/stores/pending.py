"""In-memory store for installs awaiting their callback.

Maps state -> pending install with a TTL, one-time use. Deployments running
more than one process should back ``PendingInstallStore`` with a shared
short-TTL store instead.
"""

from __future__ import annotations

import asyncio

from appinstall.auth.models.install import PendingInstall
from appinstall.auth.models.tokens import utcnow


class InMemoryPendingInstallStore:
    def __init__(self) -> None:
        self._pending: dict[str, PendingInstall] = {}
        self._lock = asyncio.Lock()

    async def put(self, pending: PendingInstall) -> None:
        async with self._lock:
            self._cleanup_expired()
            self._pending[pending.state] = pending

    async def consume(self, state: str) -> PendingInstall | None:
        async with self._lock:
            pending = self._pending.pop(state, None)
        if pending is None or pending.is_expired():
            return None
        return pending

    def __len__(self) -> int:
        return len(self._pending)

    def _cleanup_expired(self) -> None:
        now = utcnow()
        expired = [s for s, p in self._pending.items() if p.is_expired(now)]
        for state in expired:
            del self._pending[state]
