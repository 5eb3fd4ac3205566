"""
utils.py
Shared helpers: clock, config loading, logging setup, small text helpers.
"""

import copy
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import yaml

logger = logging.getLogger(__name__)

_HANDLER: Optional[logging.Handler] = None

ROOT = Path(__file__).resolve().parents[1]
OPS_DIR = ROOT / "ops"

DEFAULT_CFG: Dict[str, Dict[str, Any]] = {
    "http": {
        "timeout_sec": 15.0,
        "user_agent": "alerthub/1.0",
    },
    "throttle": {
        "max_alerts_per_game": 15,
        "max_alerts_per_hour": 10,
        "min_alert_gap_sec": 60,
        "reset_interval_sec": 3600,
    },
    "notifier": {
        "notify_channels": ["onesignal"],
        "send_delay_ms": 100,
        "ttl_sec": 3600,
        "android_channels": {"game": "game", "news": "news"},
        "accent_color": "FFC83803",
        "ios_sound": "default",
        "retry": {"max_times": 1, "backoff_sec": 2},
    },
    "polling": {
        "display_timezone": "America/Chicago",
        "weekday_window": "18:00-23:00",
        "weekend_window": "11:00-23:00",
        "live_interval_sec": 30,
        "idle_interval_sec": 300,
    },
    "state": {
        "max_seen_items": 10000,
    },
    "storage": {
        "retention_hours": 48,
    },
}


def now_ms() -> int:
    """Current UTC time in milliseconds."""
    return int(time.time() * 1000)


def setup_logging(level: Optional[str] = None) -> None:
    """Install one stream handler on the root logger; safe to call repeatedly."""
    global _HANDLER
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    if _HANDLER is not None:
        return
    _HANDLER = logging.StreamHandler(sys.stdout)
    _HANDLER.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(_HANDLER)


def merge_cfg(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Overlay user config on DEFAULT_CFG, one level deep:
    top-level keys replace, section dicts are merged key by key.
    """
    out = copy.deepcopy(DEFAULT_CFG)
    for k, v in (data or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = {**out[k], **v}
        else:
            out[k] = v
    return out


def load_cfg(path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """ops/config.yml is optional; missing or broken file -> defaults."""
    cfg_path = Path(path) if path else OPS_DIR / "config.yml"
    if not cfg_path.exists():
        return merge_cfg(None)
    try:
        data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError("top-level YAML must be a mapping")
        return merge_cfg(data)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.warning("[config] failed to read %s, using defaults: %s", cfg_path, e)
        return merge_cfg(None)


def parse_hhmm(s: str) -> int:
    """'HH:MM' -> minutes since midnight"""
    hh, mm = s.strip().split(":")
    return int(hh) * 60 + int(mm)


def in_time_range(rng: str, minute_of_day: int) -> bool:
    """
    rng: 'HH:MM-HH:MM', start inclusive, end exclusive.
    Equal start/end means an empty range; start > end wraps past midnight.
    """
    if not rng or "-" not in rng:
        return False
    start, end = rng.split("-", 1)
    start_m = parse_hhmm(start)
    end_m = parse_hhmm(end)
    if start_m == end_m:
        return False
    if start_m < end_m:
        return start_m <= minute_of_day < end_m
    return minute_of_day >= start_m or minute_of_day < end_m


def truncate(s: Optional[str], limit: int) -> str:
    if s is None:
        return ""
    return s if len(s) <= limit else s[:limit]


def contains_any(text: str, needles: Iterable[str]) -> bool:
    return any(n in text for n in needles)
