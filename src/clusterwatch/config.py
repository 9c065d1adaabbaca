from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

DEFAULT_ADDRESS = "localhost:8081"
HTTP_ERROR_POLICIES = {"surface", "skip"}


@dataclass(slots=True)
class CoordinatorConfig:
    address: str = DEFAULT_ADDRESS
    request_timeout_seconds: float | None = None
    http_error_policy: str = "skip"


@dataclass(slots=True)
class PollConfig:
    interval_seconds: float = 1.0


@dataclass(slots=True)
class SubmitConfig:
    quantity: int = 5
    interval_seconds: float = 3.0


@dataclass(slots=True)
class AppConfig:
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    submit: SubmitConfig = field(default_factory=SubmitConfig)
    log: Path | None = None


def default_config() -> AppConfig:
    return AppConfig()


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _number(mapping: dict, key: str, section: str, default: float) -> float:
    value = mapping.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{section}.{key}` must be a number") from exc


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    coordinator_raw = _section(raw, "coordinator")
    poll_raw = _section(raw, "poll")
    submit_raw = _section(raw, "submit")

    timeout_raw = coordinator_raw.get("request_timeout_seconds")
    coordinator = CoordinatorConfig(
        address=str(coordinator_raw.get("address", DEFAULT_ADDRESS)).strip(),
        request_timeout_seconds=(
            None
            if timeout_raw is None
            else _number(coordinator_raw, "request_timeout_seconds", "coordinator", 0.0)
        ),
        http_error_policy=str(coordinator_raw.get("http_error_policy", "skip")).lower(),
    )
    if not coordinator.address:
        raise ValueError("`coordinator.address` must not be empty")
    if coordinator.request_timeout_seconds is not None and coordinator.request_timeout_seconds <= 0:
        raise ValueError("`coordinator.request_timeout_seconds` must be > 0")
    if coordinator.http_error_policy not in HTTP_ERROR_POLICIES:
        raise ValueError("`coordinator.http_error_policy` must be either `surface` or `skip`")

    poll = PollConfig(interval_seconds=_number(poll_raw, "interval_seconds", "poll", 1.0))
    if poll.interval_seconds <= 0:
        raise ValueError("`poll.interval_seconds` must be > 0")

    submit = SubmitConfig(
        quantity=int(_number(submit_raw, "quantity", "submit", 5)),
        interval_seconds=_number(submit_raw, "interval_seconds", "submit", 3.0),
    )

    log_path: Path | None = None
    if raw.get("log"):
        log_path = Path(str(raw["log"])).expanduser()
        if not log_path.is_absolute():
            log_path = config_path.parent / log_path

    return AppConfig(coordinator=coordinator, poll=poll, submit=submit, log=log_path)


def ensure_local_paths(config: AppConfig) -> None:
    if config.log is not None:
        config.log.parent.mkdir(parents=True, exist_ok=True)
