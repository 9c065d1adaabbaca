from __future__ import annotations

SHORT_ID_LENGTH = 8
SENTINEL_PREFIX = "0"


def short_id(job_id: str) -> str:
    return job_id[:SHORT_ID_LENGTH]


def is_unfinished(finish_time: str) -> bool:
    return finish_time.startswith(SENTINEL_PREFIX)


def display_timestamp(value: str) -> str:
    # "2024-05-01T12:00:00.123Z" -> "2024-05-01 12:00:00"; short input degrades to a partial string
    return f"{value[0:10]} {value[11:19]}"


def display_duration(seconds: float) -> str:
    return f"{seconds:.2f}"


def base_url(address: str) -> str:
    return f"http://{address}"
