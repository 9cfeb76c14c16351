"""
Stock Intel — Settings
────────────────────────
All runtime configuration comes from the environment (or a local .env).
Provider contracts (rate limits, cache TTLs) are NOT here — those live in
orchestrator/rate_limiter.py and cache/ttl_config.py.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dotenv import load_dotenv

log = logging.getLogger("ae.config")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_json(name: str) -> Dict[str, Dict[str, Any]]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        log.warning(f"{name} is not valid JSON ({e}) — ignoring")
        return {}
    if not isinstance(data, dict):
        log.warning(f"{name} must be a JSON object — ignoring")
        return {}
    return {k: v for k, v in data.items() if isinstance(v, dict)}


@dataclass
class Settings:
    redis_url:            Optional[str] = None
    anthropic_api_key:    str = ""
    anthropic_model:      str = "claude-sonnet-4-20250514"
    synth_max_tokens:     int = 1200
    synth_max_retries:    int = 2
    api_token:            str = ""
    log_level:            str = "INFO"

    tool_timeout_s:       float = 20.0
    retry_base_delay_s:   float = 1.0
    tool_overrides:       Dict[str, Dict[str, Any]] = field(default_factory=dict)

    technicals_refresh_s: int = 300          # 5 minutes
    verdict_ttl_days:     int = 7
    batch_pacing_ms:      int = 2000
    batch_skip_fresh_h:   float = 24.0

    scheduler_enabled:    bool = True
    scheduler_tz:         str = "Asia/Kolkata"
    batch_cron_hour:      int = 6
    batch_cron_minute:    int = 30

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            redis_url            = os.getenv("REDIS_URL") or None,
            anthropic_api_key    = os.getenv("ANTHROPIC_API_KEY", ""),
            anthropic_model      = os.getenv("ANTHROPIC_MODEL", cls.anthropic_model),
            synth_max_tokens     = int(os.getenv("SYNTH_MAX_TOKENS", "1200")),
            synth_max_retries    = int(os.getenv("SYNTH_MAX_RETRIES", "2")),
            api_token            = os.getenv("API_TOKEN", ""),
            log_level            = os.getenv("LOG_LEVEL", "INFO").upper(),
            tool_timeout_s       = float(os.getenv("TOOL_TIMEOUT_S", "20")),
            retry_base_delay_s   = float(os.getenv("RETRY_BASE_DELAY_S", "1.0")),
            tool_overrides       = _env_json("TOOL_CONFIG"),
            technicals_refresh_s = int(os.getenv("TECHNICALS_REFRESH_S", "300")),
            verdict_ttl_days     = int(os.getenv("VERDICT_TTL_DAYS", "7")),
            batch_pacing_ms      = int(os.getenv("BATCH_PACING_MS", "2000")),
            batch_skip_fresh_h   = float(os.getenv("BATCH_SKIP_FRESH_HOURS", "24")),
            scheduler_enabled    = _env_bool("SCHEDULER_ENABLED", True),
            scheduler_tz         = os.getenv("SCHEDULER_TZ", "Asia/Kolkata"),
            batch_cron_hour      = int(os.getenv("BATCH_CRON_HOUR", "6")),
            batch_cron_minute    = int(os.getenv("BATCH_CRON_MINUTE", "30")),
        )
