"""
Recovery reaper for jobs abandoned in processing.

The reaper runs two independent loops: one requeues jobs whose lease expired,
the other requeues jobs past their stall deadline. Each loop has its own
interval. This handles worker crashes and hung workers that keep renewing
their lease.
"""

import asyncio
import logging
import signal

from jobstore.db.recovery import LEASE_EXPIRY, STALL, RecoveryPolicy
from jobstore.observability.logging import log_context, setup_logging
from jobstore.observability.metrics import setup_metrics
from jobstore.observability.tracing import setup_tracing
from jobstore.store import JobStore

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic recovery sweeps over one job store.

    Runs on separate schedules:
    1. Lease expiry: PROCESSING jobs with expires <= now
    2. Stall: PROCESSING jobs with stalls <= now
    Both return matching jobs to READY and count them in metrics.
    """

    def __init__(
        self,
        store: JobStore,
        interval_seconds: float | None = None,
        stall_interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: An open job store.
            interval_seconds: Seconds between lease expiry scans.
            stall_interval_seconds: Seconds between stall scans.
        """
        settings = store.settings
        self._store = store
        self._schedule: list[tuple[RecoveryPolicy, float]] = [
            (LEASE_EXPIRY, interval_seconds or settings.reaper_interval_seconds),
            (STALL, stall_interval_seconds or settings.reaper_stall_interval_seconds),
        ]
        self._running = False
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        """Run both sweep loops until stop() is called."""
        logger.info(
            "Reaper starting",
            extra={policy.name: interval for policy, interval in self._schedule},
        )
        self._running = True
        self._stopped.clear()

        await asyncio.gather(
            *(self._sweep_loop(policy, interval) for policy, interval in self._schedule)
        )

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def _sweep_loop(self, policy: RecoveryPolicy, interval: float) -> None:
        while self._running:
            try:
                await self._store.requeue_overdue(policy)
            except Exception as e:
                logger.exception(f"Error in {policy.name} sweep: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except TimeoutError:
                pass

    async def run_once(self) -> dict[str, int]:
        """
        Run every sweep once (for testing or cron-style execution).

        Returns:
            Number of requeued jobs per policy name.
        """
        counts = {}
        for policy, _ in self._schedule:
            counts[policy.name] = await self._store.requeue_overdue(policy)
        await self._store.stats()
        return counts


async def run_async() -> None:
    """Run the reaper asynchronously."""
    store = JobStore()
    settings = store.settings

    setup_logging(settings)
    setup_metrics(settings.prometheus_port)
    if settings.otel_enabled:
        setup_tracing(settings)

    await store.open()
    if not store.is_open:
        logger.error("Reaper exiting: job store did not open")
        return

    reaper = Reaper(store)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(reaper.stop())
        )

    try:
        with log_context(component="reaper"):
            await reaper.start()
    finally:
        await store.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
