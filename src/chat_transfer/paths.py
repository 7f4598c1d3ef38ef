"""Locating Cursor's global and per-workspace state.vscdb files."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import final
from urllib.parse import unquote, urlparse

import msgspec

from chat_transfer.exceptions import InvalidInputError, StoreUnavailableError
from chat_transfer.serialization import loads_any

logger = logging.getLogger(__name__)

STATE_DB_NAME = "state.vscdb"
WORKSPACE_JSON_NAME = "workspace.json"
DEFAULT_WORKSPACE_LIMIT = 20

_WSL_USERS_DIR = Path("/mnt/c/Users")
_WSL_INTEROP = Path("/proc/sys/fs/binfmt_misc/WSLInterop")
_WINDOWS_CURSOR_STORAGE = Path("AppData", "Roaming", "Cursor", "User", "workspaceStorage")


@final
@dataclass(frozen=True, slots=True)
class WorkspaceDb:
    path: Path
    hash: str
    mtime: float
    folder: str | None = None

    @property
    def name(self) -> str | None:
        if not self.folder:
            return None
        return Path(self.folder).name or None


def default_cursor_user_dir() -> Path:
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor"
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        return (Path(app_data) if app_data else Path.home() / "AppData" / "Roaming") / "Cursor"
    return Path.home() / ".config" / "Cursor"


def global_state_db(user_dir: Path | None = None) -> Path:
    return (user_dir or default_cursor_user_dir()) / "User" / "globalStorage" / STATE_DB_NAME


def _is_wsl() -> bool:
    return bool(os.environ.get("WSL_DISTRO_NAME")) or (sys.platform == "linux" and _WSL_INTEROP.exists())


def _wsl_workspace_storage_dir() -> Path | None:
    win_user = os.environ.get("WINDOWS_USER") or os.environ.get("USER") or os.environ.get("USERNAME")
    if win_user:
        candidate = _WSL_USERS_DIR / win_user / _WINDOWS_CURSOR_STORAGE
        if candidate.exists():
            return candidate
    try:
        for user_dir in sorted(_WSL_USERS_DIR.iterdir()):
            candidate = user_dir / _WINDOWS_CURSOR_STORAGE
            if candidate.exists():
                return candidate
    except OSError:
        return None
    return None


def resolve_workspace_storage_dir(override: Path | None = None, user_dir: Path | None = None) -> Path:
    """
    Finds the workspaceStorage directory.

    Order: an explicit override (config or WORKSPACE_PATH) when it exists, the remote
    server layout under ~/.cursor-server, the Windows-side directory when running
    under WSL, and finally the local Cursor user directory.
    """
    if override is not None:
        expanded = override.expanduser()
        if expanded.exists():
            return expanded
        logger.warning("Workspace storage override %s does not exist; falling back to discovery", expanded)

    remote = Path.home() / ".cursor-server" / "data" / "User" / "workspaceStorage"
    if remote.exists():
        return remote

    if _is_wsl() and (wsl_dir := _wsl_workspace_storage_dir()) is not None:
        return wsl_dir

    return (user_dir or default_cursor_user_dir()) / "User" / "workspaceStorage"


def _folder_from_uri(folder: str) -> str:
    if folder.startswith("file://"):
        return unquote(urlparse(folder).path)
    return folder


def read_workspace_folder(workspace_dir: Path) -> str | None:
    """Returns the folder a workspace storage directory belongs to, from its workspace.json."""
    try:
        document = loads_any((workspace_dir / WORKSPACE_JSON_NAME).read_bytes())
    except (OSError, msgspec.DecodeError):
        return None
    match document:
        case {"folder": str(folder)} if folder:
            return _folder_from_uri(folder) or None
        case _:
            return None


def list_workspace_dbs(root: Path, limit: int = DEFAULT_WORKSPACE_LIMIT) -> list[WorkspaceDb]:
    """Workspace stores under `root`, most recently modified first."""
    results: list[WorkspaceDb] = []
    try:
        entries = list(root.iterdir())
    except OSError as e:
        logger.warning("Could not list workspace storage %s: %s", root, e)
        return []

    for entry in entries:
        candidate = entry / STATE_DB_NAME
        if not entry.is_dir() or not candidate.is_file():
            continue
        results.append(
            WorkspaceDb(
                path=candidate,
                hash=entry.name,
                mtime=candidate.stat().st_mtime,
                folder=read_workspace_folder(entry),
            )
        )

    results.sort(key=lambda w: w.mtime, reverse=True)
    return results[:limit]


def find_workspace_db(root: Path, name: str) -> WorkspaceDb:
    """
    Resolves a workspace by the basename of its folder.

    Raises:
        InvalidInputError: if no workspace with that name exists under `root`.
    """
    for workspace in list_workspace_dbs(root, limit=sys.maxsize):
        if workspace.name == name:
            return workspace
    raise InvalidInputError(f"No workspace named '{name}' found under {root}.")


def resolve_index_store(value: str, root: Path) -> Path:
    """
    Interprets a store argument: an existing file or workspace directory is taken
    as is, a bare name is looked up as a workspace folder name.
    """
    candidate = Path(value).expanduser()
    if candidate.is_file():
        return candidate
    if candidate.is_dir() and (candidate / STATE_DB_NAME).is_file():
        return candidate / STATE_DB_NAME
    if len(candidate.parts) > 1 or candidate.suffix == ".vscdb":
        raise StoreUnavailableError(f"Store not found: {candidate}")
    return find_workspace_db(root, value).path
