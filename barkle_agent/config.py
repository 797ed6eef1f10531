from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Set

from dotenv import load_dotenv


load_dotenv()


DEFAULT_SYSTEM_PROMPT = "You are Ada, a helpful AI assistant bot."
DEFAULT_PLUGINS = ("moderation", "statistics")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_id_set(name: str, aliases: tuple[str, ...] = ()) -> Set[str]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return set()
    return {chunk.strip() for chunk in raw.split(",") if chunk.strip()}


def _env_list(name: str, default: tuple[str, ...], aliases: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def read_text_with_fallback(path: Path) -> str:
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "cp1251"):
        try:
            return path.read_text(encoding=encoding)
        except UnicodeDecodeError as exc:
            last_exc = exc
    if last_exc is not None:
        raise last_exc
    raise RuntimeError(f"Failed to read file: {path}")


def load_system_prompt(path: Path) -> str:
    if not path.exists():
        return DEFAULT_SYSTEM_PROMPT
    try:
        prompt = read_text_with_fallback(path).strip()
    except (OSError, UnicodeDecodeError):
        return DEFAULT_SYSTEM_PROMPT
    return prompt or DEFAULT_SYSTEM_PROMPT


@dataclass(slots=True)
class Settings:
    barkle_api_url: str
    barkle_wss_url: str
    barkle_api_key: str
    barkle_timeout_seconds: int

    completion_url: str
    completion_api_key: str
    completion_model: str
    completion_timeout_seconds: int
    completion_temperature: float
    completion_max_tokens: int

    bot_username: str
    bot_name: str
    system_prompt_path: Path
    system_prompt: str
    log_level: str

    reconnect_interval_seconds: float
    reconnect_backoff_factor: float
    reconnect_max_delay_seconds: float
    max_reconnect_attempts: int

    sqlite_path: Path
    max_history_messages: int
    conversation_seed_message: str

    rate_limit_max_messages: int
    rate_limit_window_seconds: int
    rate_limit_exempt_user_ids: Set[str]
    upgrade_url: str

    dedup_retention_days: int
    maintenance_interval_seconds: int

    memory_enabled: bool
    memory_top_k: int
    memory_max_per_user: int
    memory_protected_importance: int

    profile_cache_ttl_seconds: int
    thread_context_depth: int

    tools_enabled: bool
    tool_timeout_seconds: float

    plugins_enabled: bool
    plugin_names: tuple[str, ...]
    stats_path: Path

    @classmethod
    def from_env(cls) -> "Settings":
        system_prompt_path = Path(_env_str("SYSTEM_PROMPT_PATH", "./system.txt", aliases=("SYSTEM_PATH",))).expanduser()
        return cls(
            barkle_api_url=_env_str("BARKLE_API_URL", ""),
            barkle_wss_url=_env_str("BARKLE_WSS_URL", ""),
            barkle_api_key=_env_str("BARKLE_API_KEY", ""),
            barkle_timeout_seconds=_env_int("BARKLE_TIMEOUT_SECONDS", 10),
            completion_url=_env_str("COMPLETION_URL", "", aliases=("AVUNITE_URL",)),
            completion_api_key=_env_str("COMPLETION_API_KEY", "", aliases=("AVUNITE_KEY",)),
            completion_model=_env_str("COMPLETION_MODEL", "", aliases=("AVUNITE_MODEL",)),
            completion_timeout_seconds=_env_int("COMPLETION_TIMEOUT_SECONDS", 30),
            completion_temperature=_env_float("COMPLETION_TEMPERATURE", 0.7),
            completion_max_tokens=_env_int("COMPLETION_MAX_TOKENS", 1000),
            bot_username=_env_str("BOT_USERNAME", "").lstrip("@"),
            bot_name=_env_str("BOT_NAME", "Ada Bot"),
            system_prompt_path=system_prompt_path,
            system_prompt=load_system_prompt(system_prompt_path),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            reconnect_interval_seconds=_env_float("RECONNECT_INTERVAL_SECONDS", 5.0),
            reconnect_backoff_factor=_env_float("RECONNECT_BACKOFF_FACTOR", 1.0),
            reconnect_max_delay_seconds=_env_float("RECONNECT_MAX_DELAY_SECONDS", 60.0),
            max_reconnect_attempts=_env_int("MAX_RECONNECT_ATTEMPTS", 10),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/barkle_agent.db")).expanduser(),
            max_history_messages=_env_int("MAX_HISTORY_MESSAGES", 0),
            conversation_seed_message=_env_str("CONVERSATION_SEED_MESSAGE", ""),
            rate_limit_max_messages=_env_int("RATE_LIMIT_MAX_MESSAGES", 15),
            rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", 3600),
            rate_limit_exempt_user_ids=_env_id_set("RATE_LIMIT_EXEMPT_USER_IDS"),
            upgrade_url=_env_str("UPGRADE_URL", "https://barkle.chat/settings/manage-plus"),
            dedup_retention_days=_env_int("DEDUP_RETENTION_DAYS", 7),
            maintenance_interval_seconds=_env_int("MAINTENANCE_INTERVAL_SECONDS", 300),
            memory_enabled=_env_bool("MEMORY_ENABLED", True),
            memory_top_k=_env_int("MEMORY_TOP_K", 10),
            memory_max_per_user=_env_int("MEMORY_MAX_PER_USER", 200),
            memory_protected_importance=_env_int("MEMORY_PROTECTED_IMPORTANCE", 7),
            profile_cache_ttl_seconds=_env_int("PROFILE_CACHE_TTL_SECONDS", 1800),
            thread_context_depth=_env_int("THREAD_CONTEXT_DEPTH", 5),
            tools_enabled=_env_bool("TOOLS_ENABLED", True),
            tool_timeout_seconds=_env_float("TOOL_TIMEOUT_SECONDS", 20.0),
            plugins_enabled=_env_bool("PLUGINS_ENABLED", True),
            plugin_names=_env_list("PLUGINS", DEFAULT_PLUGINS),
            stats_path=Path(_env_str("STATS_PATH", "./data/stats.json")).expanduser(),
        )

    def validate(self) -> None:
        required = {
            "BARKLE_API_URL": self.barkle_api_url,
            "BARKLE_WSS_URL": self.barkle_wss_url,
            "BARKLE_API_KEY": self.barkle_api_key,
            "COMPLETION_URL": self.completion_url,
            "COMPLETION_API_KEY": self.completion_api_key,
            "COMPLETION_MODEL": self.completion_model,
            "BOT_USERNAME": self.bot_username,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

        if self.barkle_timeout_seconds < 1:
            raise ValueError("BARKLE_TIMEOUT_SECONDS must be >= 1")
        if self.completion_timeout_seconds < 5:
            raise ValueError("COMPLETION_TIMEOUT_SECONDS must be >= 5")
        if self.completion_max_tokens < 1:
            raise ValueError("COMPLETION_MAX_TOKENS must be >= 1")

        if self.reconnect_interval_seconds < 0:
            raise ValueError("RECONNECT_INTERVAL_SECONDS must be >= 0")
        if self.reconnect_backoff_factor < 1.0:
            raise ValueError("RECONNECT_BACKOFF_FACTOR must be >= 1.0 (1.0 means fixed delay)")
        if self.max_reconnect_attempts < 0:
            raise ValueError("MAX_RECONNECT_ATTEMPTS must be >= 0")

        if self.max_history_messages < 0:
            raise ValueError("MAX_HISTORY_MESSAGES must be >= 0 (0 keeps the full history)")
        if self.rate_limit_max_messages < 1:
            raise ValueError("RATE_LIMIT_MAX_MESSAGES must be >= 1")
        if self.rate_limit_window_seconds < 1:
            raise ValueError("RATE_LIMIT_WINDOW_SECONDS must be >= 1")

        if self.dedup_retention_days < 1:
            raise ValueError("DEDUP_RETENTION_DAYS must be >= 1")
        if self.maintenance_interval_seconds < 10:
            raise ValueError("MAINTENANCE_INTERVAL_SECONDS must be >= 10")

        if self.memory_top_k < 1:
            raise ValueError("MEMORY_TOP_K must be >= 1")
        if self.memory_max_per_user < 1:
            raise ValueError("MEMORY_MAX_PER_USER must be >= 1")
        if not 1 <= self.memory_protected_importance <= 10:
            raise ValueError("MEMORY_PROTECTED_IMPORTANCE must be in [1, 10]")

        if self.thread_context_depth < 0:
            raise ValueError("THREAD_CONTEXT_DEPTH must be >= 0")
        if self.tool_timeout_seconds <= 0:
            raise ValueError("TOOL_TIMEOUT_SECONDS must be > 0")
