# src/campus_sync/sync/connectivity.py
"""
Connectivity Monitor.

Holds the current online/offline state and publishes transitions. The
embedding application can feed it directly (set_online), or let it probe
the remote endpoint periodically with httpx.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from ..timeutils import utcnow
from .events import EventStream

logger = logging.getLogger(__name__)


@dataclass
class ConnectivityChange:
    online: bool
    timestamp: datetime = field(default_factory=utcnow)


class ConnectivityMonitor:
    """
    Online/offline state with a transition stream.

    Example:
        monitor = ConnectivityMonitor(initially_online=False)
        monitor.changes.subscribe(on_change)
        await monitor.set_online(True)   # publishes ConnectivityChange(True)
        await monitor.set_online(True)   # no transition, nothing published
    """

    def __init__(self, initially_online: bool = False):
        self._online = initially_online
        self.changes: EventStream[ConnectivityChange] = EventStream("connectivity")
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    async def set_online(self, online: bool) -> bool:
        """Update state. Returns True if this was a transition."""
        if online == self._online:
            return False
        self._online = online
        if online:
            logger.info("✅ Connectivity regained")
        else:
            logger.warning("⚠️ Connectivity lost")
        await self.changes.publish(ConnectivityChange(online))
        return True

    # =========================================================================
    # PROBING
    # =========================================================================

    async def probe(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict] = None,
    ) -> bool:
        """
        One reachability check against the remote endpoint.

        Any HTTP response counts as reachable; only transport failures mean
        offline.
        """
        try:
            if client is not None:
                await client.get(url, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as owned:
                    await owned.get(url, headers=headers)
            reachable = True
        except httpx.HTTPError as e:
            logger.debug(f"Probe of {url} failed: {e}")
            reachable = False

        await self.set_online(reachable)
        return reachable

    async def run_probe_loop(
        self,
        url: str,
        interval: float = 30.0,
        timeout: float = 5.0,
        headers: Optional[dict] = None,
    ) -> None:
        """Probe forever; cancel the task to stop."""
        async with httpx.AsyncClient(timeout=timeout) as client:
            while True:
                await self.probe(url, timeout=timeout, client=client, headers=headers)
                await asyncio.sleep(interval)

    def start_probing(self, url: str, interval: float = 30.0, timeout: float = 5.0,
                      headers: Optional[dict] = None) -> asyncio.Task:
        if self._probe_task is None or self._probe_task.done():
            self._probe_task = asyncio.create_task(
                self.run_probe_loop(url, interval=interval, timeout=timeout, headers=headers)
            )
            logger.info(f"Probing {url} every {interval}s")
        return self._probe_task

    async def stop_probing(self) -> None:
        if self._probe_task is None:
            return
        self._probe_task.cancel()
        try:
            await self._probe_task
        except asyncio.CancelledError:
            pass
        self._probe_task = None
