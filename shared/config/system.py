from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jsonschema import Draft7Validator

from shared.logging.logger import get_logger

log = get_logger("shared.config.system")

_CONFIG_PATH = Path(__file__).parent / "system.json"
_SCHEMA_PATH = Path(__file__).parent / "system.schema.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8080/api"
    token: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class RefreshConfig:
    enabled: bool = True
    interval_seconds: float = 30.0


@dataclass
class TallyConfig:
    location_top_n: int = 3
    top_performers_limit: int = 5
    trend_window_days: int = 7
    trend_threshold_pct: float = 2.0


@dataclass
class ExportConfig:
    enabled: bool = False
    state_dir: str = "shared/state"
    relative_path: str = "results.json"


@dataclass
class SystemConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    tally: TallyConfig = field(default_factory=TallyConfig)
    export: ExportConfig = field(default_factory=ExportConfig)


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"system.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except Exception as e:
        log.warning(f"Failed to load system.json ({e}); using defaults")
        return {}


def _validate(raw: Dict[str, Any], schema_path: Path = _SCHEMA_PATH) -> None:
    """Log schema violations as warnings; invalid fields fall back to defaults."""
    if not schema_path.exists():
        log.debug(f"Schema not found at {schema_path}; skipping validation")
        return

    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
    except Exception as e:
        log.warning(f"Failed to load system schema ({e}); skipping validation")
        return

    validator = Draft7Validator(schema)
    for err in sorted(validator.iter_errors(raw), key=lambda e: list(e.path)):
        loc = "/".join(str(p) for p in err.path)
        log.warning(f"system config validation warning at '{loc}': {err.message}")


def _as_float(value: Any, default: float, *, minimum: float = 0.0) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if result > minimum else default


def _as_int(value: Any, default: int, *, minimum: int = 1) -> int:
    if isinstance(value, bool):
        return default
    try:
        result = int(value)
    except (TypeError, ValueError):
        return default
    return result if result >= minimum else default


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return default


def _load_api(raw: Optional[Dict[str, Any]]) -> ApiConfig:
    if not isinstance(raw, dict):
        return ApiConfig()

    base_url = raw.get("base_url")
    token = raw.get("token")
    return ApiConfig(
        base_url=str(base_url) if base_url else ApiConfig.base_url,
        token=str(token) if token else None,
        timeout_seconds=_as_float(raw.get("timeout_seconds"), ApiConfig.timeout_seconds),
    )


def _load_refresh(raw: Optional[Dict[str, Any]]) -> RefreshConfig:
    if not isinstance(raw, dict):
        return RefreshConfig()

    return RefreshConfig(
        enabled=_as_bool(raw.get("enabled"), RefreshConfig.enabled),
        interval_seconds=_as_float(raw.get("interval_seconds"), RefreshConfig.interval_seconds),
    )


def _load_tally(raw: Optional[Dict[str, Any]]) -> TallyConfig:
    if not isinstance(raw, dict):
        return TallyConfig()

    threshold = raw.get("trend_threshold_pct", TallyConfig.trend_threshold_pct)
    try:
        threshold_value = max(0.0, float(threshold))
    except (TypeError, ValueError):
        threshold_value = TallyConfig.trend_threshold_pct

    return TallyConfig(
        location_top_n=_as_int(raw.get("location_top_n"), TallyConfig.location_top_n),
        top_performers_limit=_as_int(raw.get("top_performers_limit"), TallyConfig.top_performers_limit),
        trend_window_days=_as_int(raw.get("trend_window_days"), TallyConfig.trend_window_days),
        trend_threshold_pct=threshold_value,
    )


def _load_export(raw: Optional[Dict[str, Any]]) -> ExportConfig:
    if not isinstance(raw, dict):
        return ExportConfig()

    return ExportConfig(
        enabled=_as_bool(raw.get("enabled"), ExportConfig.enabled),
        state_dir=str(raw.get("state_dir") or ExportConfig.state_dir),
        relative_path=str(raw.get("relative_path") or ExportConfig.relative_path),
    )


def _apply_env(cfg: SystemConfig, env: Mapping[str, str]) -> SystemConfig:
    """
    Environment overrides (usually populated from .env by the entrypoint):
    AWARDS_API_URL, AWARDS_API_TOKEN, AWARDS_API_TIMEOUT,
    AWARDS_REFRESH_INTERVAL, AWARDS_EXPORT_ENABLED
    """
    if env.get("AWARDS_API_URL"):
        cfg.api.base_url = env["AWARDS_API_URL"]
    if env.get("AWARDS_API_TOKEN"):
        cfg.api.token = env["AWARDS_API_TOKEN"]
    if env.get("AWARDS_API_TIMEOUT"):
        cfg.api.timeout_seconds = _as_float(env["AWARDS_API_TIMEOUT"], cfg.api.timeout_seconds)
    if env.get("AWARDS_REFRESH_INTERVAL"):
        interval = _as_float(env["AWARDS_REFRESH_INTERVAL"], -1.0)
        if interval > 0:
            cfg.refresh.interval_seconds = interval
        else:
            log.warning(
                f"Invalid AWARDS_REFRESH_INTERVAL={env['AWARDS_REFRESH_INTERVAL']}; "
                f"using {cfg.refresh.interval_seconds}"
            )
    if env.get("AWARDS_EXPORT_ENABLED") is not None:
        cfg.export.enabled = _as_bool(env["AWARDS_EXPORT_ENABLED"], cfg.export.enabled)
    return cfg


def load_system_config(
    raw: Optional[Dict[str, Any]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> SystemConfig:
    raw = raw if raw is not None else _load_json(_CONFIG_PATH)
    if not isinstance(raw, dict):
        raw = {}

    _validate(raw)

    cfg = SystemConfig(
        api=_load_api(raw.get("api")),
        refresh=_load_refresh(raw.get("refresh")),
        tally=_load_tally(raw.get("tally")),
        export=_load_export(raw.get("export")),
    )
    return _apply_env(cfg, os.environ if env is None else env)
