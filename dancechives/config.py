"""Global configuration for Dance Chives."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

ENV_PREFIX = "DANCECHIVES_"

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "enable_scheduler": True,
    "notification_page_size": 50,
    "notification_retention_days": 90,
    "notification_prune_hours": 24,
    "graph_checkpoint_minutes": 5,
    "seed_users": 12,
    "seed_events": 4,
    "seed_sections_per_event": 2,
    "seed_videos_per_section": 3,
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "enable_scheduler": bool,
    "notification_page_size": int,
    "notification_retention_days": int,
    "notification_prune_hours": int,
    "graph_checkpoint_minutes": int,
    "seed_users": int,
    "seed_events": int,
    "seed_sections_per_event": int,
    "seed_videos_per_section": int,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    graph_path: Path
    app_host: str
    app_port: int
    enable_scheduler: bool
    notification_page_size: int
    notification_retention_days: int
    notification_prune_hours: int
    graph_checkpoint_minutes: int
    seed_users: int
    seed_events: int
    seed_sections_per_event: int
    seed_videos_per_section: int
    config_path: Path

    @property
    def notification_retention(self) -> timedelta:
        return timedelta(days=self.notification_retention_days)


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"{ENV_PREFIX}{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_under(base: Path, value: str | Path | None, default: Path) -> Path:
    resolved = Path(value) if value else default
    if not resolved.is_absolute():
        resolved = base / resolved
    return resolved


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
    graph_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = _resolve_under(resolved_base, data_dir, resolved_base / "data")
    resolved_db = _resolve_under(
        resolved_base, database_path, resolved_data / "dancechives.db"
    )
    resolved_graph = _resolve_under(
        resolved_base, graph_path, resolved_data / "graph.ttl"
    )
    return resolved_base, resolved_data, resolved_db, resolved_graph


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv(f"{ENV_PREFIX}BASE_DIR", Path.cwd()))
    env_config = os.getenv(f"{ENV_PREFIX}CONFIG")
    config_path = Path(config_override or env_config or base_dir / "dancechives.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value, graph_path_value = (
        _resolve_paths(
            base_dir=base_dir,
            data_dir=os.getenv(f"{ENV_PREFIX}DATA_DIR", toml_config.get("data_dir")),
            database_path=os.getenv(
                f"{ENV_PREFIX}DB", toml_config.get("database_path")
            ),
            graph_path=os.getenv(f"{ENV_PREFIX}GRAPH", toml_config.get("graph_path")),
        )
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        graph_path=graph_path_value,
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    values: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
        "graph_path": str(settings.graph_path),
    }
    for key in DEFAULTS:
        values[key] = getattr(settings, key)
    return values


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Dance Chives configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        if key not in DEFAULTS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()
