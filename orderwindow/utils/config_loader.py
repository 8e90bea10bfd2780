from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from orderwindow.utils.account_config import FIELD_ALIASES

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Tehran"
DEFAULT_LOG_DIR = "logs"
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0
DEFAULT_ACCOUNT_KEY = "default"

_SETTINGS_KEYS = {"timezone", "log_dir", "display_clock", "http_timeout_seconds", "defaults", "accounts"}

_cache_lock = threading.Lock()
_cached: RunConfig | None = None
_cached_path: str | None = None


@dataclass(frozen=True)
class RunConfig:
    timezone: str = DEFAULT_TIMEZONE
    log_dir: str = DEFAULT_LOG_DIR
    display_clock: bool = False
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    # Raw per-account mappings; each session validates its own.
    accounts: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def _project_root() -> Path:
    # orderwindow/utils/config_loader.py -> orderwindow/utils -> orderwindow -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    return _project_root() / "config" / "accounts.yaml"


def _parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "on"}


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """Override selected process-wide settings with environment variables."""
    if os.getenv("ORDERWINDOW_TIMEZONE"):
        cfg["timezone"] = os.environ["ORDERWINDOW_TIMEZONE"]
    if os.getenv("ORDERWINDOW_LOG_DIR"):
        cfg["log_dir"] = os.environ["ORDERWINDOW_LOG_DIR"]
    if os.getenv("ORDERWINDOW_HTTP_TIMEOUT_SECONDS"):
        cfg["http_timeout_seconds"] = float(os.environ["ORDERWINDOW_HTTP_TIMEOUT_SECONDS"])
    if os.getenv("ORDERWINDOW_DISPLAY_CLOCK"):
        cfg["display_clock"] = _parse_bool(os.environ["ORDERWINDOW_DISPLAY_CLOCK"])


def account_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Build a single account mapping from the legacy environment variables."""
    env = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    for aliases in FIELD_ALIASES.values():
        for key in aliases:
            if key.isupper() and env.get(key):
                out[key] = env[key]
    return out


def _split_accounts(doc: dict[str, Any]) -> dict[str, dict[str, Any]]:
    if "accounts" in doc:
        accounts = doc.get("accounts") or {}
        if not isinstance(accounts, dict):
            raise ValueError(f"'accounts' must be a mapping; got {type(accounts).__name__}")
    elif doc and not (set(doc) & _SETTINGS_KEYS) and all(isinstance(v, dict) for v in doc.values()):
        # Legacy users.json shape: { "<key>": { "USER_NAME": ..., ... }, ... }
        accounts = doc
    else:
        accounts = {}

    defaults = doc.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ValueError(f"'defaults' must be a mapping; got {type(defaults).__name__}")

    out: dict[str, dict[str, Any]] = {}
    for key, acct in accounts.items():
        if acct is not None and not isinstance(acct, dict):
            raise ValueError(f"Account '{key}' must be a mapping; got {type(acct).__name__}")
        merged = dict(defaults)
        merged.update(acct or {})
        out[str(key)] = merged
    return out


def validate_config(cfg: dict[str, Any]) -> None:
    """Fail fast on structural problems. Account fields are checked per session."""
    tz_name = str(cfg.get("timezone") or DEFAULT_TIMEZONE)
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {tz_name}") from exc

    if float(cfg.get("http_timeout_seconds") or DEFAULT_HTTP_TIMEOUT_SECONDS) <= 0:
        raise ValueError("http_timeout_seconds must be > 0")

    if not cfg.get("accounts"):
        raise ValueError("No accounts configured (config file has no accounts and no USER_NAME in environment)")


def _build(doc: dict[str, Any]) -> RunConfig:
    cfg: dict[str, Any] = {
        "timezone": doc.get("timezone") or DEFAULT_TIMEZONE,
        "log_dir": doc.get("log_dir") or DEFAULT_LOG_DIR,
        "display_clock": _parse_bool(doc.get("display_clock", False)),
        "http_timeout_seconds": float(doc.get("http_timeout_seconds") or DEFAULT_HTTP_TIMEOUT_SECONDS),
        "accounts": _split_accounts(doc),
    }
    _apply_env_overrides(cfg)
    validate_config(cfg)
    return RunConfig(
        timezone=str(cfg["timezone"]),
        log_dir=str(cfg["log_dir"]),
        display_clock=bool(cfg["display_clock"]),
        http_timeout_seconds=float(cfg["http_timeout_seconds"]),
        accounts=cfg["accounts"],
    )


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> RunConfig:
    """
    Load the run configuration once and reuse it across the process.

    - Reads `config/accounts.yaml` by default (JSON files such as `users.json` work too).
    - Without a config file, a single `default` account is built from the environment.
    - Applies environment overrides for the process-wide settings.
    - Returns a deep copy so callers can safely mutate local copies.
    """
    global _cached, _cached_path

    explicit = config_path is not None
    path = Path(config_path) if explicit else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                doc = yaml.safe_load(f) or {}
            if not isinstance(doc, dict):
                raise ValueError(f"Config must be a YAML mapping (dict); got {type(doc).__name__}")
            source = path_str
        elif explicit:
            raise FileNotFoundError(f"Config file not found: {path}")
        else:
            doc = {"accounts": {DEFAULT_ACCOUNT_KEY: account_from_env()}} if os.getenv("USER_NAME") else {}
            source = "environment"

        run_config = _build(doc)

        _cached = run_config
        _cached_path = path_str
        logger.info("Loaded config from %s (%d account(s))", source, len(run_config.accounts))
        return deepcopy(run_config)
