from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .app_logging import log_with_fields
from .coordinator import CoordinatorClient, CoordinatorError, CoordinatorStatusError
from .models import Snapshot
from .snapshot import SnapshotError, build_snapshot

SnapshotListener = Callable[[Snapshot], None]


class PollingSynchronizer:
    """Keeps the published ``Snapshot`` fresh by polling ``/getallnodes``.

    Every tick runs as its own task, so a slow response can overlap the next
    tick. Ticks are numbered in issue order and a result is only published if
    no later tick has been published already.
    """

    def __init__(
        self,
        client: CoordinatorClient,
        logger: logging.Logger,
        *,
        interval_seconds: float = 1.0,
        http_error_policy: str = "skip",
    ) -> None:
        self.client = client
        self.logger = logger
        self.interval_seconds = interval_seconds
        self.http_error_policy = http_error_policy
        self._snapshot = Snapshot.empty()
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._listeners: list[SnapshotListener] = []
        self._issued = 0
        self._applied = 0

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def last_error(self) -> str:
        return self._snapshot.error_message

    @property
    def active(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def api_server(self) -> str:
        return self.client.address

    def set_api_server(self, address: str) -> None:
        previous = self.client.address
        self.client.address = address
        log_with_fields(self.logger, logging.INFO, "api_server_changed", previous=previous, address=address)

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def start(self) -> asyncio.Task[None]:
        if self.active:
            assert self._loop_task is not None
            return self._loop_task
        self._loop_task = asyncio.create_task(self._run_forever(), name="clusterwatch-poll")
        log_with_fields(
            self.logger,
            logging.INFO,
            "poll_started",
            address=self.client.address,
            interval_seconds=self.interval_seconds,
        )
        return self._loop_task

    def stop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        for tick in list(self._in_flight):
            tick.cancel()
        self._in_flight.clear()
        log_with_fields(self.logger, logging.INFO, "poll_stopped", issued=self._issued, applied=self._applied)

    async def poll_once(self) -> Snapshot:
        await self._tick(self._next_sequence())
        return self._snapshot

    async def _run_forever(self) -> None:
        while True:
            self._spawn_tick()
            await asyncio.sleep(self.interval_seconds)

    def _next_sequence(self) -> int:
        self._issued += 1
        return self._issued

    def _spawn_tick(self) -> None:
        tick = asyncio.create_task(self._tick(self._next_sequence()))
        self._in_flight.add(tick)
        tick.add_done_callback(self._tick_done)

    def _tick_done(self, tick: asyncio.Task[None]) -> None:
        self._in_flight.discard(tick)
        if tick.cancelled():
            return
        exc = tick.exception()
        if exc is not None:
            self.logger.error("poll_tick_crashed", exc_info=exc)

    async def _tick(self, sequence: int) -> None:
        outcome = await self._fetch(sequence)
        if outcome is not None:
            self._publish(sequence, outcome)

    async def _fetch(self, sequence: int) -> Snapshot | None:
        try:
            payload = await self.client.fetch_nodes()
            snapshot = build_snapshot(payload)
        except CoordinatorStatusError as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "poll_http_error",
                sequence=sequence,
                status_code=exc.status_code,
                policy=self.http_error_policy,
                error=str(exc),
            )
            if self.http_error_policy == "skip":
                return None
            return Snapshot.failed(str(exc))
        except CoordinatorError as exc:
            log_with_fields(self.logger, logging.WARNING, "poll_failed", sequence=sequence, error=str(exc))
            return Snapshot.failed(str(exc))
        except SnapshotError as exc:
            message = f"malformed coordinator response: {exc}"
            log_with_fields(self.logger, logging.ERROR, "poll_malformed_response", sequence=sequence, error=message)
            return Snapshot.failed(message)

        log_with_fields(
            self.logger,
            logging.DEBUG,
            "poll_succeeded",
            sequence=sequence,
            workers=len(snapshot.workers),
            jobs=len(snapshot.all_jobs),
        )
        return snapshot

    def _publish(self, sequence: int, snapshot: Snapshot) -> None:
        if sequence <= self._applied:
            log_with_fields(
                self.logger,
                logging.INFO,
                "poll_stale_discarded",
                sequence=sequence,
                applied=self._applied,
            )
            return
        self._applied = sequence
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self.logger.exception("snapshot_listener_failed")
