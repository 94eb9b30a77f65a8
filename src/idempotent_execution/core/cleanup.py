"""Background purge of expired idempotency records.

Remote stores usually collect expired items themselves (per-item TTL). For
stores without that mechanism, such as the in-memory store, a sweeper
periodically removes records past their expiry so storage does not grow
without bound. Expiry is still judged at read time by the handler, so a
sweep only reclaims space and never changes an outcome.

Examples:
    Tie the sweeper to an ASGI application lifespan::

        from idempotent_execution.core.cleanup import ExpiredRecordSweeper
        from idempotent_execution.persistence.memory import InMemoryPersistenceLayer

        store = InMemoryPersistenceLayer()
        sweeper = ExpiredRecordSweeper(store, interval_seconds=300)

        @asynccontextmanager
        async def lifespan(app):
            sweeper.start()
            yield
            await sweeper.stop()
"""

import asyncio
from typing import Protocol, runtime_checkable

from idempotent_execution.observability.logging import get_logger
from idempotent_execution.observability.metrics import record_cleanup

logger = get_logger(__name__)


@runtime_checkable
class PurgeableStore(Protocol):
    """A store that can remove its own expired records."""

    async def purge_expired(self) -> int:
        """Remove expired records and return how many were removed."""
        ...


class ExpiredRecordSweeper:
    """Runs ``store.purge_expired()`` every ``interval_seconds`` on the event loop.

    Attributes:
        store: Store to purge.
        interval_seconds: Pause between sweeps.
    """

    def __init__(self, store: PurgeableStore, interval_seconds: float = 300) -> None:
        self.store = store
        self.interval_seconds = interval_seconds
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        """Purge once. A failed purge is logged and counts as zero removed."""
        try:
            removed = await self.store.purge_expired()
        except Exception as e:
            logger.error("cleanup.failed", error=str(e), error_type=type(e).__name__)
            return 0

        record_cleanup(removed)
        if removed:
            logger.info("cleanup.completed", records_removed=removed)
        return removed

    async def run(self) -> None:
        """Sweep until ``stop`` is called."""
        logger.info("cleanup.started", interval_seconds=self.interval_seconds)
        while not self._stopping.is_set():
            await self.sweep_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("cleanup.stopped")

    def start(self) -> asyncio.Task[None]:
        """Schedule ``run`` as a background task on the running loop.

        Raises:
            RuntimeError: If the sweeper is already running.
        """
        if self.running:
            raise RuntimeError("Sweeper is already running")
        self._stopping.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self, timeout: float = 5.0) -> None:
        """Stop the background task, cancelling it if it outlives ``timeout``."""
        if self._task is None:
            return
        self._stopping.set()
        task, self._task = self._task, None
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            # wait_for already cancelled the task
            logger.warning("cleanup.stop_timeout", timeout=timeout)
