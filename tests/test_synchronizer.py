from __future__ import annotations

import asyncio
import unittest
from typing import Any

import httpx

from clusterwatch.coordinator import CoordinatorClient
from clusterwatch.models import Snapshot
from clusterwatch.synchronizer import PollingSynchronizer

from helpers import job, node, quiet_logger


class FakeCoordinator:
    """Scripted ``/getallnodes`` responses; each entry is a payload, a status code, raw body bytes or ``Refused``."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Refused):
            raise httpx.ConnectError(response.message, request=request)
        if isinstance(response, int):
            return httpx.Response(response, text="error")
        if isinstance(response, bytes):
            return httpx.Response(200, content=response, headers={"content-type": "application/json"})
        return httpx.Response(200, json=response)


class Refused:
    def __init__(self, message: str) -> None:
        self.message = message


def refused(message: str = "Connection refused") -> Refused:
    return Refused(message)


CLUSTER = {
    "nodes": [
        node("n1", "worker-a", [job("a1", "2024-01-01T00:00:00"), job("a2", "2024-02-01T00:00:00")]),
        node("n2", "worker-b", [job("b1", "2024-03-01T00:00:00")]),
    ]
}
OTHER_CLUSTER = {"nodes": [node("n9", "worker-z", [job("z1", "2024-06-01T00:00:00")])]}
RAW_NODE = (
    '{"nodes": [{"id": "n1", "name": "worker-a", "ip": "10.0.0.1", "port": "9000", "jobscount": %(jobscount)s,'
    ' "jobs": [{"id": "a1", "duration": %(duration)s, "startTime": "2024-01-01T00:00:00",'
    ' "finishTime": "0001-01-01T00:00:00Z"}]}]}'
)


class SynchronizerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncTearDown(self) -> None:
        await self.client.aclose()

    def make_synchronizer(self, coordinator: FakeCoordinator | Any, **kwargs: Any) -> PollingSynchronizer:
        self.client = CoordinatorClient("coordinator:8081", transport=httpx.MockTransport(coordinator.handler))
        return PollingSynchronizer(self.client, quiet_logger(), **kwargs)


class PollOutcomeTest(SynchronizerTestCase):
    async def test_success_publishes_snapshot(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER))
        snapshot = await synchronizer.poll_once()
        self.assertEqual(snapshot.error_message, "")
        self.assertEqual([record.job_id for record in snapshot.all_jobs], ["b1", "a2", "a1"])
        self.assertEqual(len(snapshot.workers), 2)
        self.assertIs(synchronizer.snapshot, snapshot)

    async def test_transport_failures_reset_state_each_time(self) -> None:
        synchronizer = self.make_synchronizer(
            FakeCoordinator(CLUSTER, refused("first outage"), refused("second outage"))
        )
        await synchronizer.poll_once()
        self.assertTrue(synchronizer.snapshot.all_jobs)

        first = await synchronizer.poll_once()
        self.assertEqual((first.all_jobs, first.workers), ((), ()))
        self.assertIn("first outage", first.error_message)

        second = await synchronizer.poll_once()
        self.assertEqual((second.all_jobs, second.workers), ((), ()))
        self.assertIn("second outage", second.error_message)
        self.assertNotIn("first outage", second.error_message)

    async def test_recovery_after_failure(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER, refused(), OTHER_CLUSTER))
        await synchronizer.poll_once()
        await synchronizer.poll_once()
        self.assertNotEqual(synchronizer.last_error, "")

        recovered = await synchronizer.poll_once()
        self.assertEqual(recovered.error_message, "")
        self.assertEqual([record.job_id for record in recovered.all_jobs], ["z1"])
        self.assertEqual([worker.name for worker in recovered.workers], ["worker-z"])

    async def test_http_error_surfaced_when_configured(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER, 500), http_error_policy="surface")
        await synchronizer.poll_once()
        snapshot = await synchronizer.poll_once()
        self.assertIn("500", snapshot.error_message)
        self.assertEqual(snapshot.all_jobs, ())

    async def test_http_error_skipped_by_default(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER, 500))
        self.assertEqual(synchronizer.http_error_policy, "skip")
        before = await synchronizer.poll_once()
        after = await synchronizer.poll_once()
        self.assertIs(after, before)
        self.assertEqual(after.error_message, "")

    async def test_malformed_body_fails_closed(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER, {"nodes": [{"name": "broken"}]}))
        await synchronizer.poll_once()
        snapshot = await synchronizer.poll_once()
        self.assertTrue(snapshot.error_message.startswith("malformed coordinator response"))
        self.assertEqual((snapshot.all_jobs, snapshot.workers), ((), ()))

    async def test_out_of_range_numbers_fail_closed(self) -> None:
        bodies = {
            "NaN jobscount": RAW_NODE % {"jobscount": "NaN", "duration": "1.5"},
            "Infinity jobscount": RAW_NODE % {"jobscount": "Infinity", "duration": "1.5"},
            "huge jobscount": RAW_NODE % {"jobscount": "1" + "0" * 400, "duration": "1.5"},
            "NaN duration": RAW_NODE % {"jobscount": "1", "duration": "NaN"},
            "-Infinity duration": RAW_NODE % {"jobscount": "1", "duration": "-Infinity"},
            "huge duration": RAW_NODE % {"jobscount": "1", "duration": "1" + "0" * 400},
        }
        for label, body in bodies.items():
            with self.subTest(label):
                synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER, body.encode()))
                await synchronizer.poll_once()
                snapshot = await synchronizer.poll_once()
                self.assertTrue(snapshot.error_message.startswith("malformed coordinator response"))
                self.assertEqual((snapshot.all_jobs, snapshot.workers), ((), ()))
                await self.client.aclose()

    async def test_listener_errors_are_contained(self) -> None:
        synchronizer = self.make_synchronizer(FakeCoordinator(CLUSTER))
        seen: list[Snapshot] = []

        def broken(snapshot: Snapshot) -> None:
            raise RuntimeError("render failed")

        synchronizer.add_listener(broken)
        synchronizer.add_listener(seen.append)
        snapshot = await synchronizer.poll_once()
        self.assertEqual(seen, [snapshot])


class GatedCoordinator:
    """First request waits for ``release``; later requests answer immediately."""

    def __init__(self) -> None:
        self.first_started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.calls == 1:
            self.first_started.set()
            await self.release.wait()
            return httpx.Response(200, json=CLUSTER)
        return httpx.Response(200, json=OTHER_CLUSTER)


class OverlapTest(SynchronizerTestCase):
    async def test_late_response_from_older_tick_is_discarded(self) -> None:
        coordinator = GatedCoordinator()
        synchronizer = self.make_synchronizer(coordinator)

        older = asyncio.create_task(synchronizer.poll_once())
        await coordinator.first_started.wait()
        await synchronizer.poll_once()
        self.assertEqual([worker.name for worker in synchronizer.snapshot.workers], ["worker-z"])

        coordinator.release.set()
        await older
        self.assertEqual([worker.name for worker in synchronizer.snapshot.workers], ["worker-z"])


class LifecycleTest(SynchronizerTestCase):
    async def test_crashed_tick_is_logged(self) -> None:
        crashed = asyncio.Event()

        class Exploding:
            def handler(self, request: httpx.Request) -> httpx.Response:
                crashed.set()
                raise RuntimeError("unexpected failure")

        synchronizer = self.make_synchronizer(Exploding(), interval_seconds=60)
        with self.assertLogs("test_clusterwatch", level="ERROR") as captured:
            synchronizer.start()
            await asyncio.wait_for(crashed.wait(), timeout=1)
            await asyncio.sleep(0.01)
            synchronizer.stop()

        self.assertTrue(any("poll_tick_crashed" in line for line in captured.output))
        self.assertEqual(synchronizer.snapshot, Snapshot.empty())

    async def test_ticks_publish_until_stopped(self) -> None:
        coordinator = FakeCoordinator(CLUSTER)
        synchronizer = self.make_synchronizer(coordinator, interval_seconds=0.01)
        published = asyncio.Event()
        synchronizer.add_listener(lambda snapshot: published.set())

        task = synchronizer.start()
        self.assertIs(synchronizer.start(), task)
        await asyncio.wait_for(published.wait(), timeout=1)
        self.assertTrue(synchronizer.active)

        synchronizer.stop()
        self.assertFalse(synchronizer.active)
        calls_at_stop = coordinator.calls
        await asyncio.sleep(0.05)
        self.assertEqual(coordinator.calls, calls_at_stop)
        self.assertTrue(task.cancelled())

    async def test_stop_does_not_wait_for_in_flight_request(self) -> None:
        coordinator = GatedCoordinator()
        synchronizer = self.make_synchronizer(coordinator, interval_seconds=60)

        synchronizer.start()
        await asyncio.wait_for(coordinator.first_started.wait(), timeout=1)
        synchronizer.stop()

        coordinator.release.set()
        await asyncio.sleep(0.01)
        self.assertEqual(synchronizer.snapshot, Snapshot.empty())
        self.assertEqual(coordinator.calls, 1)

    async def test_set_api_server_used_by_next_tick(self) -> None:
        hosts: list[str] = []

        class Recorder:
            def handler(self, request: httpx.Request) -> httpx.Response:
                hosts.append(request.url.host)
                return httpx.Response(200, json=CLUSTER)

        synchronizer = self.make_synchronizer(Recorder())
        await synchronizer.poll_once()
        synchronizer.set_api_server("elsewhere:9090")
        await synchronizer.poll_once()
        self.assertEqual(hosts, ["coordinator", "elsewhere"])
        self.assertEqual(synchronizer.api_server, "elsewhere:9090")


if __name__ == "__main__":
    unittest.main()
