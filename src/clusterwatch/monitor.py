from __future__ import annotations

import asyncio
import logging

import httpx

from .config import AppConfig
from .coordinator import CoordinatorClient
from .models import Snapshot
from .submission import SubmissionLoop, SubmissionReport
from .synchronizer import PollingSynchronizer, SnapshotListener


class ClusterMonitor:
    """What a front end talks to: a read-only view plus two commands.

    The poller and the submitter share one coordinator client but no state.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: logging.Logger,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.logger = logger
        self.client = CoordinatorClient(
            config.coordinator.address,
            timeout=config.coordinator.request_timeout_seconds,
            transport=transport,
        )
        self.synchronizer = PollingSynchronizer(
            self.client,
            logger,
            interval_seconds=config.poll.interval_seconds,
            http_error_policy=config.coordinator.http_error_policy,
        )
        self.submitter = SubmissionLoop(self.client, logger)

    async def __aenter__(self) -> ClusterMonitor:
        self.activate()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def view(self) -> Snapshot:
        return self.synchronizer.snapshot

    @property
    def api_server(self) -> str:
        return self.client.address

    def set_api_server(self, address: str) -> None:
        self.synchronizer.set_api_server(address.strip())

    def add_listener(self, listener: SnapshotListener) -> None:
        self.synchronizer.add_listener(listener)

    def activate(self) -> asyncio.Task[None]:
        return self.synchronizer.start()

    def deactivate(self) -> None:
        self.synchronizer.stop()
        self.submitter.cancel()

    async def refresh(self) -> Snapshot:
        return await self.synchronizer.poll_once()

    def submit(
        self,
        quantity: int | None = None,
        interval: float | None = None,
    ) -> asyncio.Task[SubmissionReport] | None:
        return self.submitter.start(
            self.config.submit.quantity if quantity is None else quantity,
            self.config.submit.interval_seconds if interval is None else interval,
        )

    async def close(self) -> None:
        self.deactivate()
        await self.client.aclose()
