"""
Liveness Monitor
================

Single periodic heartbeat sweep over every registered client connection.

Each sweep:
- terminates and deregisters connections that did not answer the previous ping
- pings every other connection, clearing its liveness flag until it answers

A connection that goes silent is therefore evicted from every registry index
within two heartbeat intervals. One serialized sweep covers all connections;
there are no per-connection timers.
"""

import asyncio
from typing import Dict, Optional

from src.pools.connection_registry import ConnectionRegistry
from utils.ml_logging import get_logger

logger = get_logger(__name__)


class LivenessMonitor:
    """Background ping/pong sweep bound to one ``ConnectionRegistry``."""

    def __init__(self, registry: ConnectionRegistry, interval_seconds: float = 30.0):
        self._registry = registry
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._sweep_lock = asyncio.Lock()
        self._is_shutting_down = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the sweep loop. Calling it while running is a no-op."""
        if self.running:
            return
        self._is_shutting_down = False
        self._task = asyncio.create_task(self._sweep_loop(), name="liveness-sweep")
        logger.info(f"Liveness monitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        self._is_shutting_down = True
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Liveness monitor stopped")

    async def _sweep_loop(self) -> None:
        while not self._is_shutting_down:
            try:
                await asyncio.sleep(self._interval)
                await self.sweep()
            except asyncio.CancelledError:
                logger.debug("Liveness sweep loop cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in liveness sweep: {e}")

    async def sweep(self) -> Dict[str, int]:
        """
        Run one heartbeat pass.

        Returns:
            Dict with the number of connections pinged and evicted.
        """
        pinged = 0
        evicted = 0

        async with self._sweep_lock:
            for conn in await self._registry.snapshot():
                try:
                    if not conn.is_alive:
                        logger.warning(
                            "Connection missed heartbeat; terminating",
                            extra={
                                "session_id": conn.session_id,
                                "restaurant_id": conn.meta.restaurant_id,
                            },
                        )
                        await conn.terminate()
                        # No-op when the handler already deregistered it
                        await self._registry.deregister(conn)
                        evicted += 1
                        continue

                    await conn.ping()
                    pinged += 1
                except Exception as e:
                    logger.error(
                        f"Heartbeat failed for connection: {e}",
                        extra={"session_id": conn.session_id},
                    )

        if evicted:
            logger.info(f"Liveness sweep complete: pinged={pinged}, evicted={evicted}")
        return {"pinged": pinged, "evicted": evicted}
