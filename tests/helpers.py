from __future__ import annotations

import logging
from typing import Any


def quiet_logger(name: str = "test_clusterwatch") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


def job(job_id: str, start: str, finish: str = "0001-01-01T00:00:00Z", duration: float = 1.0) -> dict[str, Any]:
    return {"id": job_id, "duration": duration, "startTime": start, "finishTime": finish}


def node(node_id: str, name: str, jobs: list[dict[str, Any]], jobscount: int | None = None) -> dict[str, Any]:
    return {
        "id": node_id,
        "name": name,
        "ip": "10.0.0.1",
        "port": "9000",
        "jobscount": len(jobs) if jobscount is None else jobscount,
        "jobs": jobs,
    }
