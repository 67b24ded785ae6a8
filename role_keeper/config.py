from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"
DEFAULT_PREFIX = "."


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_id_list(raw: str) -> List[int]:
    ids = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            ids.append(int(token))
        except ValueError:
            continue
    return ids


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    prefix = os.getenv("ROLE_KEEPER_COMMAND_PREFIX")
    if prefix:
        overrides.setdefault("command", {})["prefix"] = prefix

    admins = _parse_id_list(os.getenv("ROLE_KEEPER_ADMIN_IDS", ""))
    if admins:
        overrides.setdefault("admin", {})["user_ids"] = admins

    allowed = _parse_id_list(os.getenv("TELEGRAM_ALLOWED_USER_IDS", ""))
    if allowed:
        overrides.setdefault("telegram", {})["allowed_user_ids"] = allowed

    level = os.getenv("ROLE_KEEPER_LOG_LEVEL")
    if level:
        overrides.setdefault("logging", {})["level"] = level

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("ROLE_KEEPER_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(data, _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def get_command_prefix(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = config if config is not None else load_config()
    prefix = str(_section(cfg, "command").get("prefix", DEFAULT_PREFIX))
    # a letter or digit prefix would be indistinguishable from the command name
    if len(prefix) != 1 or prefix.isalnum() or prefix.isspace():
        raise ConfigError(f"command.prefix must be one punctuation character, got {prefix!r}")
    return prefix


def get_admin_ids(config: Optional[Dict[str, Any]] = None) -> set[int]:
    cfg = config if config is not None else load_config()
    raw = _section(cfg, "admin").get("user_ids") or []
    try:
        return {int(x) for x in raw}
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"admin.user_ids must be a list of integers: {raw!r}") from exc


def get_allowed_user_ids(config: Optional[Dict[str, Any]] = None) -> set[int]:
    cfg = config if config is not None else load_config()
    raw = _section(cfg, "telegram").get("allowed_user_ids") or []
    try:
        return {int(x) for x in raw}
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"telegram.allowed_user_ids must be a list of integers: {raw!r}") from exc


def get_token_env_var(config: Optional[Dict[str, Any]] = None) -> str:
    cfg = config if config is not None else load_config()
    return str(_section(cfg, "telegram").get("bot_token_env_var", "TELEGRAM_BOT_TOKEN"))


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    cfg = config if config is not None else load_config()
    log_path = str(_section(cfg, "paths").get("log_file", "logs/role-keeper.log"))
    return resolve_path(log_path)
