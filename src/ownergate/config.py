from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
import tomllib
from typing import cast

from ownergate.models import MergeMethod


_MERGE_METHODS: tuple[MergeMethod, ...] = ("merge", "squash", "rebase")
_TRUE_STRINGS = frozenset({"true", "yes", "1", "on"})
_FALSE_STRINGS = frozenset({"false", "no", "0", "off"})


@dataclass(frozen=True)
class ActionConfig:
    cwd: Path
    merge_method: MergeMethod = "squash"
    assign_reviewer: bool = False
    poll_interval_seconds: int = 5
    consistency_wait_seconds: int = 5
    check_timeout_seconds: int | None = None
    job_name: str | None = None


class ConfigError(ValueError):
    pass


def default_config(*, cwd: Path | None = None) -> ActionConfig:
    return ActionConfig(cwd=cwd if cwd is not None else Path.cwd())


def load_config(path: Path | None, *, environ: Mapping[str, str]) -> ActionConfig:
    """Build the run configuration.

    Values come from the optional ``[action]`` table of a TOML file and are then
    overridden by GitHub Actions inputs (``INPUT_CWD``, ``INPUT_MERGE_METHOD``...).
    ``job_name`` defaults to ``GITHUB_JOB`` so the running job's own check run is
    excluded from the merge gate.
    """
    config = default_config()
    if path is not None:
        config = _apply_file(config, path)
    config = _apply_inputs(config, environ)
    if config.job_name is None:
        job = environ.get("GITHUB_JOB", "").strip()
        if job:
            config = replace(config, job_name=job)
    _validate(config)
    return config


def _apply_file(config: ActionConfig, path: Path) -> ActionConfig:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Config file {path} is not valid TOML: {exc}") from exc

    action_data = _optional_table(data, "action")
    if action_data is None:
        return config

    cwd = _optional_str(action_data, "cwd")
    resolved_cwd = config.cwd
    if cwd is not None:
        candidate = Path(cwd).expanduser()
        resolved_cwd = candidate if candidate.is_absolute() else path.parent / candidate

    return replace(
        config,
        cwd=resolved_cwd,
        merge_method=_merge_method_with_default(action_data, "merge_method", config.merge_method),
        assign_reviewer=_bool_with_default(action_data, "assign_reviewer", config.assign_reviewer),
        poll_interval_seconds=_int_with_default(
            action_data, "poll_interval_seconds", config.poll_interval_seconds
        ),
        consistency_wait_seconds=_int_with_default(
            action_data, "consistency_wait_seconds", config.consistency_wait_seconds
        ),
        check_timeout_seconds=_optional_int(action_data, "check_timeout_seconds"),
        job_name=_optional_str(action_data, "job_name"),
    )


def _apply_inputs(config: ActionConfig, environ: Mapping[str, str]) -> ActionConfig:
    updates: dict[str, object] = {}
    cwd = _input(environ, "cwd")
    if cwd is not None:
        updates["cwd"] = Path(cwd).expanduser()
    merge_method = _input(environ, "merge_method")
    if merge_method is not None:
        updates["merge_method"] = _parse_merge_method(merge_method, key="merge_method")
    assign_reviewer = _input(environ, "assign_reviewer")
    if assign_reviewer is not None:
        updates["assign_reviewer"] = _parse_bool_input(assign_reviewer, key="assign_reviewer")
    for key in ("poll_interval_seconds", "consistency_wait_seconds", "check_timeout_seconds"):
        raw = _input(environ, key)
        if raw is not None:
            updates[key] = _parse_int_input(raw, key=key)
    job_name = _input(environ, "job_name")
    if job_name is not None:
        updates["job_name"] = job_name
    if not updates:
        return config
    return replace(config, **updates)  # type: ignore[arg-type]


def _validate(config: ActionConfig) -> None:
    if config.poll_interval_seconds < 1:
        raise ConfigError("poll_interval_seconds must be >= 1")
    if config.consistency_wait_seconds < 0:
        raise ConfigError("consistency_wait_seconds must be >= 0")
    if config.check_timeout_seconds is not None and config.check_timeout_seconds < 1:
        raise ConfigError("check_timeout_seconds must be >= 1 if provided")


def _input(environ: Mapping[str, str], name: str) -> str | None:
    # Matches @actions/core getInput: unset and empty inputs are both absent.
    value = environ.get(f"INPUT_{name.upper()}", "").strip()
    return value or None


def _parse_bool_input(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_STRINGS:
        return True
    if normalized in _FALSE_STRINGS:
        return False
    raise ConfigError(f"{key} must be a boolean (true/false), got {value!r}")


def _parse_int_input(value: str, *, key: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc


def _parse_merge_method(value: object, *, key: str) -> MergeMethod:
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be one of: {', '.join(_MERGE_METHODS)}")
    normalized = value.strip().lower()
    if normalized not in _MERGE_METHODS:
        raise ConfigError(f"{key} must be one of: {', '.join(_MERGE_METHODS)}")
    return cast(MergeMethod, normalized)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _optional_int(data: dict[str, object], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _merge_method_with_default(
    data: dict[str, object], key: str, default: MergeMethod
) -> MergeMethod:
    value = data.get(key, default)
    return _parse_merge_method(value, key=key)
