from __future__ import annotations

import math
from types import MappingProxyType
from typing import Any

from .models import Job, Snapshot, Worker


class SnapshotError(ValueError):
    pass


def _require(mapping: Any, key: str, context: str) -> Any:
    if not isinstance(mapping, dict):
        raise SnapshotError(f"`{context}` must be an object")
    if key not in mapping:
        raise SnapshotError(f"Missing `{context}.{key}` in coordinator response")
    return mapping[key]


def _require_str(mapping: dict, key: str, context: str) -> str:
    value = _require(mapping, key, context)
    if not isinstance(value, str):
        raise SnapshotError(f"`{context}.{key}` must be a string")
    return value


def _require_number(mapping: dict, key: str, context: str) -> float:
    value = _require(mapping, key, context)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SnapshotError(f"`{context}.{key}` must be a number")
    try:
        number = float(value)
    except OverflowError as exc:
        raise SnapshotError(f"`{context}.{key}` is out of range") from exc
    if not math.isfinite(number):
        raise SnapshotError(f"`{context}.{key}` must be finite")
    return number


def _require_list(mapping: dict, key: str, context: str) -> list:
    value = _require(mapping, key, context)
    if not isinstance(value, list):
        raise SnapshotError(f"`{context}.{key}` must be a list")
    return value


def _newest_first(jobs: list[Job]) -> tuple[Job, ...]:
    return tuple(sorted(jobs, key=lambda job: job.start_time, reverse=True))


def build_job(raw: Any, worker_name: str, context: str) -> Job:
    job_id = _require(raw, "id", context)
    return Job(
        job_id=str(job_id),
        worker_name=worker_name,
        duration=_require_number(raw, "duration", context),
        start_time=_require_str(raw, "startTime", context),
        finish_time=_require_str(raw, "finishTime", context),
    )


def build_snapshot(payload: Any) -> Snapshot:
    """Turn a ``/getallnodes`` response body into a ``Snapshot``.

    Jobs are ordered by raw ``startTime`` descending, both globally and per
    worker; workers are ordered by id descending. Any missing or mistyped
    field raises ``SnapshotError`` and no partial snapshot is produced.
    """
    nodes = _require_list(payload, "nodes", "response")

    all_jobs: list[Job] = []
    jobs_by_id: dict[str, Job] = {}
    workers: list[Worker] = []
    for node_index, node in enumerate(nodes):
        context = f"nodes[{node_index}]"
        name = _require_str(node, "name", context)
        ip = _require(node, "ip", context)
        port = _require(node, "port", context)
        job_count = _require_number(node, "jobscount", context)

        owned: list[Job] = []
        for job_index, raw_job in enumerate(_require_list(node, "jobs", context)):
            job = build_job(raw_job, name, f"{context}.jobs[{job_index}]")
            owned.append(job)
            all_jobs.append(job)
            jobs_by_id[job.job_id] = job

        workers.append(
            Worker(
                worker_id=_require(node, "id", context),
                name=name,
                address=f"{ip}:{port}",
                job_count=int(job_count),
                jobs=_newest_first(owned),
            )
        )

    try:
        ordered_workers = tuple(sorted(workers, key=lambda worker: worker.worker_id, reverse=True))
    except TypeError as exc:
        raise SnapshotError(f"worker ids are not comparable: {exc}") from exc

    return Snapshot(
        all_jobs=_newest_first(all_jobs),
        workers=ordered_workers,
        jobs_by_id=MappingProxyType(jobs_by_id),
        error_message="",
    )
