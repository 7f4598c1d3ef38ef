import os
from pathlib import Path
from typing import NotRequired, TypedDict

from pydantic import TypeAdapter, ValidationError

from chat_transfer.exceptions import ConfigurationError

DEFAULT_BUSY_TIMEOUT = 5.0
# In-memory processing of larger global stores has failed in practice.
DEFAULT_MAX_STORE_BYTES = 1536 * 1024 * 1024


class ConfigFile(TypedDict):
    busy_timeout: NotRequired[float]
    max_store_bytes: NotRequired[int]
    backup_dir: NotRequired[str]
    cursor_user_dir: NotRequired[str]
    workspace_storage_dir: NotRequired[str]


class Settings(TypedDict):
    busy_timeout: float
    max_store_bytes: int
    backup_dir: Path | None
    cursor_user_dir: Path | None
    workspace_storage_dir: Path | None


# Use XDG_CONFIG_HOME or default to ~/.config/chat-transfer
def _get_config_dir() -> Path:
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config) if xdg_config else Path.home() / ".config"
    return base / "chat-transfer"


def _get_config_file() -> Path:
    return _get_config_dir() / "config.json"


def _load_config_file() -> ConfigFile:
    config_file = _get_config_file()
    if not config_file.exists():
        return {}

    try:
        return TypeAdapter(ConfigFile).validate_json(config_file.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Could not read config file {config_file}: {e}") from e
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config file {config_file}: {e}") from e


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name} must be a number, got {raw!r}.") from e


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"Environment variable {name} must be an integer, got {raw!r}.") from e


def _env_path(name: str) -> Path | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw).expanduser()


def _optional_path(value: str | None) -> Path | None:
    return Path(value).expanduser() if value else None


def load_settings() -> Settings:
    """
    Resolves settings: built-in defaults, then the config file, then environment variables.
    """
    file_config = _load_config_file()

    busy_timeout = _env_float("CHAT_TRANSFER_BUSY_TIMEOUT")
    if busy_timeout is None:
        busy_timeout = file_config.get("busy_timeout", DEFAULT_BUSY_TIMEOUT)

    max_store_bytes = _env_int("CHAT_TRANSFER_MAX_STORE_BYTES")
    if max_store_bytes is None:
        max_store_bytes = file_config.get("max_store_bytes", DEFAULT_MAX_STORE_BYTES)

    if busy_timeout < 0:
        raise ConfigurationError("busy_timeout must not be negative.")
    if max_store_bytes <= 0:
        raise ConfigurationError("max_store_bytes must be positive.")

    return {
        "busy_timeout": busy_timeout,
        "max_store_bytes": max_store_bytes,
        "backup_dir": _env_path("CHAT_TRANSFER_BACKUP_DIR") or _optional_path(file_config.get("backup_dir")),
        "cursor_user_dir": _env_path("CURSOR_USER_DIR") or _optional_path(file_config.get("cursor_user_dir")),
        "workspace_storage_dir": _env_path("WORKSPACE_PATH")
        or _optional_path(file_config.get("workspace_storage_dir")),
    }
