from chat_transfer.commands.stores import workspace_root
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_workspaces
from chat_transfer.paths import list_workspace_dbs


def workspaces(limit: int, json_output: bool) -> None:
    found = list_workspace_dbs(workspace_root(load_settings()), limit)

    if json_output:
        print_json(
            [{"name": w.name, "folder": w.folder, "hash": w.hash, "path": str(w.path), "mtime": w.mtime} for w in found]
        )
    else:
        render_workspaces(found)
