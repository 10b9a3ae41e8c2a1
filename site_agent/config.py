"""Configuration loader for the automation runtime."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

DEFAULTS: Dict[str, Any] = {
    "site_url_patterns": ("https://masar.nusuk.sa/*",),
    "site_login_url": "https://masar.nusuk.sa/pub/login",
    "host_url": "http://localhost:5000/",
    "host_url_patterns": ("http://localhost:*/*", "http://127.0.0.1:*/*"),
    "headless": False,
    "cdp_url": "",
    "default_retry_delay": 5.0,
    "announce_interval": 5.0,
    "liveness_timeout": 15.0,
    "navigation_step_delay": 2.0,
    "log_root": "runs",
}


def _as_patterns(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    return tuple(str(item) for item in value)


def _as_bool(value: Any) -> bool:
    return str(value).lower() in {"true", "1", "yes"}


def _as_optional_float(value: Any) -> Optional[float]:
    if value is None or str(value).strip().lower() in {"", "none", "off"}:
        return None
    return float(value)


@dataclass(slots=True)
class RunConfig:
    site_url_patterns: Tuple[str, ...] = DEFAULTS["site_url_patterns"]
    site_login_url: str = DEFAULTS["site_login_url"]
    host_url: str = DEFAULTS["host_url"]
    host_url_patterns: Tuple[str, ...] = DEFAULTS["host_url_patterns"]
    headless: bool = DEFAULTS["headless"]
    cdp_url: str = DEFAULTS["cdp_url"]
    default_retry_delay: float = DEFAULTS["default_retry_delay"]
    announce_interval: Optional[float] = DEFAULTS["announce_interval"]
    liveness_timeout: Optional[float] = DEFAULTS["liveness_timeout"]
    navigation_step_delay: float = DEFAULTS["navigation_step_delay"]
    log_root: Path = field(default_factory=lambda: Path(DEFAULTS["log_root"]))

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "RunConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        return cls(
            site_url_patterns=_as_patterns(data["site_url_patterns"]),
            site_login_url=str(data["site_login_url"]),
            host_url=str(data["host_url"]),
            host_url_patterns=_as_patterns(data["host_url_patterns"]),
            headless=_as_bool(data["headless"]),
            cdp_url=str(data["cdp_url"] or ""),
            default_retry_delay=float(data["default_retry_delay"]),
            announce_interval=_as_optional_float(data["announce_interval"]),
            liveness_timeout=_as_optional_float(data["liveness_timeout"]),
            navigation_step_delay=float(data["navigation_step_delay"]),
            log_root=Path(data["log_root"]),
        )


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None) -> RunConfig:
    """Load configuration from environment, optional TOML file, and defaults."""

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith("AUTOBOOK_"):
            env_map[key[9:].lower()] = value

    file_map: Dict[str, Any] = {}
    path = config_path or Path("config.toml")
    if path.exists():
        file_map = _load_toml(path).get("autobook", {})

    merged = {**file_map, **env_map}
    return RunConfig.from_mapping(merged)


def ensure_run_directory(run_id: str, config: RunConfig) -> Path:
    base = config.log_root / run_id
    base.mkdir(parents=True, exist_ok=True)
    return base


@dataclass(frozen=True, slots=True)
class Timings:
    """Fixed waits of the site controller, in seconds."""

    field_wait: float = 10.0
    element_wait: float = 5.0
    login_poll_interval: float = 1.0
    login_poll_attempts: int = 20
    post_login_delay: float = 1.0
    submit_settle: float = 0.8
    field_pause: float = 0.2
    slot_wait: float = 5.0
    confirm_settle: float = 0.8
    fast_retry: float = 0.5

