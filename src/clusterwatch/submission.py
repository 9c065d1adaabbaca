from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .app_logging import log_with_fields
from .coordinator import CoordinatorClient, CoordinatorError

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class SubmissionReport:
    requested: int
    sent: int = 0
    failed: int = 0
    cancelled: bool = False


class SubmissionLoop:
    """Issues ``quantity`` ``/newjob`` requests, ``interval`` seconds apart.

    Responses are only logged. A failed request never stops the loop; only
    ``cancel()`` (or starting a new run) does.
    """

    def __init__(
        self,
        client: CoordinatorClient,
        logger: logging.Logger,
        *,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.client = client
        self.logger = logger
        self.sleep = sleep
        self._task: asyncio.Task[SubmissionReport] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, quantity: int, interval: float) -> asyncio.Task[SubmissionReport] | None:
        self.cancel()
        if quantity <= 0:
            log_with_fields(self.logger, logging.INFO, "submission_finished", requested=quantity, sent=0, failed=0)
            return None
        self._task = asyncio.create_task(self.run(quantity, interval), name="clusterwatch-submit")
        return self._task

    def cancel(self) -> None:
        if self.running:
            assert self._task is not None
            self._task.cancel()
        self._task = None

    async def run(self, quantity: int, interval: float) -> SubmissionReport:
        report = SubmissionReport(requested=quantity)
        if quantity <= 0:
            return report

        log_with_fields(self.logger, logging.INFO, "submission_started", quantity=quantity, interval=interval)
        try:
            for index in range(quantity):
                await self._submit_one(index, report)
                await self.sleep(interval)
        except asyncio.CancelledError:
            report.cancelled = True
            log_with_fields(
                self.logger,
                logging.INFO,
                "submission_cancelled",
                requested=quantity,
                sent=report.sent,
                failed=report.failed,
            )
            raise

        log_with_fields(
            self.logger,
            logging.INFO,
            "submission_finished",
            requested=quantity,
            sent=report.sent,
            failed=report.failed,
        )
        return report

    async def _submit_one(self, index: int, report: SubmissionReport) -> None:
        report.sent += 1
        try:
            result = await self.client.create_job()
        except CoordinatorError as exc:
            report.failed += 1
            log_with_fields(self.logger, logging.WARNING, "job_submit_failed", index=index, error=str(exc))
            return
        log_with_fields(self.logger, logging.INFO, "job_submitted", index=index, response=result)
