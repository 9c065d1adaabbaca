from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .utils import display_duration, display_timestamp, is_unfinished, short_id


class JobState(str, Enum):
    RUNNING = "running"
    DONE = "done"

    @property
    def glyph(self) -> str:
        return "⟳" if self is JobState.RUNNING else "✓"

    @classmethod
    def from_finish_time(cls, finish_time: str) -> JobState:
        return cls.RUNNING if is_unfinished(finish_time) else cls.DONE


@dataclass(frozen=True, slots=True)
class Job:
    job_id: str
    worker_name: str
    duration: float
    start_time: str
    finish_time: str

    @property
    def state(self) -> JobState:
        return JobState.from_finish_time(self.finish_time)

    @property
    def short_id(self) -> str:
        return short_id(self.job_id)

    @property
    def display_duration(self) -> str:
        return display_duration(self.duration)

    @property
    def display_start(self) -> str:
        return display_timestamp(self.start_time)

    @property
    def display_finish(self) -> str:
        if self.state is JobState.RUNNING:
            return ""
        return display_timestamp(self.finish_time)


@dataclass(frozen=True, slots=True)
class Worker:
    worker_id: Any
    name: str
    address: str
    job_count: int
    jobs: tuple[Job, ...] = ()


@dataclass(frozen=True, slots=True)
class Snapshot:
    """One complete view of the cluster, replaced wholesale on every poll.

    ``all_jobs`` and each ``Worker.jobs`` are orderings over the same ``Job``
    objects held in the read-only ``jobs_by_id`` mapping. Snapshots compare by
    value but are not hashable.
    """

    __hash__ = None  # type: ignore[assignment]

    all_jobs: tuple[Job, ...] = ()
    workers: tuple[Worker, ...] = ()
    jobs_by_id: Mapping[str, Job] = field(default_factory=lambda: MappingProxyType({}))
    error_message: str = ""

    @property
    def ok(self) -> bool:
        return self.error_message == ""

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()

    @classmethod
    def failed(cls, message: str) -> Snapshot:
        return cls(error_message=message or "unknown error")
