"""Turns store arguments from the command line into concrete state.vscdb paths."""

from pathlib import Path

from chat_transfer.config import Settings
from chat_transfer.paths import global_state_db, resolve_index_store, resolve_workspace_storage_dir


def workspace_root(settings: Settings) -> Path:
    return resolve_workspace_storage_dir(settings["workspace_storage_dir"], settings["cursor_user_dir"])


def index_store_path(value: str, settings: Settings) -> Path:
    """A path to a state.vscdb, a workspace storage directory, or a workspace name."""
    return resolve_index_store(value, workspace_root(settings))


def payload_store_path(value: Path | None, settings: Settings) -> Path:
    """The given payload store, or the global state.vscdb of the configured Cursor profile."""
    if value is not None:
        return value.expanduser()
    return global_state_db(settings["cursor_user_dir"])
