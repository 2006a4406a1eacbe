"""
Daily sweep for SpendFlow.

Runs the obligation processor for every user with active obligations, so
charges happen even for users who do not open a session that day. Runs are
idempotent, so the sweep and session-triggered runs may overlap freely.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import date

from spendflow.core.context import ProcessingContext
from spendflow.lib.exceptions import StoreError
from spendflow.models import Card, RecurringExpense
from spendflow.workflows.obligations import ProcessingReport, RecurringObligationProcessor

logger = logging.getLogger(__name__)


class DailySweep:
    """
    Periodic processor run over all users.

    Usage:
        sweep = DailySweep(ctx, interval_seconds=86400)
        sweep.start()
        ...
        await sweep.stop()
    """

    def __init__(self, ctx: ProcessingContext, interval_seconds: float) -> None:
        self.ctx = ctx
        self.interval_seconds = interval_seconds
        self.processor = RecurringObligationProcessor(ctx)
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def user_ids(self) -> list[str]:
        """Users with at least one active recurring expense or auto-paying card."""
        expenses = await self.ctx.store.query(RecurringExpense, is_active=True)
        cards = await self.ctx.store.query(Card, is_active=True, auto_pay_enabled=True)
        return sorted({e.user_id for e in expenses} | {c.user_id for c in cards})

    async def run_once(self, today: date | None = None) -> dict[str, ProcessingReport]:
        """Process every user once. Store failures end the sweep early."""
        today = today or self.ctx.today()
        reports: dict[str, ProcessingReport] = {}
        try:
            user_ids = await self.user_ids()
        except StoreError:
            logger.exception("daily_sweep_user_scan_failed")
            return reports
        for user_id in user_ids:
            reports[user_id] = await self.processor.process(user_id, today=today)
        logger.info("daily_sweep_complete users=%d date=%s", len(reports), today.isoformat())
        return reports

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            await self.run_once()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="spendflow-daily-sweep")
        logger.info("daily_sweep_started interval_seconds=%s", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=30)
        except TimeoutError:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("daily_sweep_stopped")
