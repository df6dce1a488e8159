"""
Nightly penalty reconciliation.

The job wakes once a day at the configured local time and, in its own
session:

1. refreshes the stored fine on every overdue active loan,
2. re-scores every waitlist so waiting time keeps counting,
3. hands any free copy to a waiting student (normally a no-op).

Each step commits independently. A failed waitlist step is logged and the
run still finishes; a failed fine refresh ends the run and the job retries
on the next day. The sweep itself is idempotent, so a missed or repeated run only
changes when fines are refreshed, never what they come to.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta

import logfire

from .clock import Clock, get_clock
from .config import EngineConfig, get_config
from .database.circulation_repository import CirculationRepository
from .database.errors import RepositoryException
from .database.penalty_repository import PenaltyRepository
from .database.session import DatabaseManager, get_db_manager
from .models.penalty import ReconciliationReport
from .observability.metrics import record_reconciliation

logger = logging.getLogger(__name__)


class ReconciliationJob:
    """Runs the reconciliation sweep once a day."""

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
    ):
        self.db_manager = db_manager
        self.config = config or get_config()
        self.clock = clock or get_clock()
        self.last_report: ReconciliationReport | None = None

    @property
    def run_at(self) -> time:
        return time(self.config.reconciliation_hour, self.config.reconciliation_minute)

    def next_run_after(self, now: datetime) -> datetime:
        """The first scheduled run strictly after `now`."""
        candidate = datetime.combine(now.date(), self.run_at, tzinfo=now.tzinfo)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    def run_once(self) -> ReconciliationReport:
        """Run one sweep now and return the reconciliation report."""
        manager = self.db_manager or get_db_manager()

        with logfire.span("scheduler.reconciliation") as span:
            with manager.session_scope() as session:
                report = PenaltyRepository(session, self.config, self.clock).reconcile_penalties()
            span.set_attribute("reconciliation.updated", report.updated)
            span.set_attribute("reconciliation.skipped", len(report.skipped))
            record_reconciliation(report.updated, report.unchanged, len(report.skipped))

            try:
                with manager.session_scope() as session:
                    circulation = CirculationRepository(session, self.config, self.clock)
                    refreshed = circulation.waitlist.refresh_all_queues()
                    recovered = circulation.recover_promotions()
            except RepositoryException:
                logger.exception("Waitlist maintenance failed; will retry on the next run")
            else:
                span.set_attribute("waitlist.queues_refreshed", refreshed)
                span.set_attribute("waitlist.promotions_recovered", len(recovered))

        self.last_report = report
        return report

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Sleep until each scheduled time and sweep, until `stop_event` is set."""
        while not stop_event.is_set():
            now = self.clock.now()
            next_run = self.next_run_after(now)
            delay = (next_run - now).total_seconds()
            logger.info("Next penalty reconciliation at %s", next_run.isoformat())

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except TimeoutError:
                pass
            else:
                break

            try:
                await asyncio.to_thread(self.run_once)
            except RepositoryException:
                logger.exception("Penalty reconciliation failed; will retry on the next run")

        logger.info("Reconciliation job stopped")
