from pathlib import Path

from chat_transfer.commands.stores import index_store_path, payload_store_path
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_report
from chat_transfer.transfer.export import SNAPSHOT_SUFFIX
from chat_transfer.transfer.operations import export_to_file


def default_output_path(workspace: str, index_path: Path) -> Path:
    stem = index_path.parent.name if Path(workspace).expanduser().exists() else workspace
    return Path.cwd() / f"{stem or 'chats'}{SNAPSHOT_SUFFIX}"


def export(
    workspace: str,
    output: Path | None,
    payload_store: Path | None,
    composer_ids: list[str],
    json_output: bool,
) -> None:
    settings = load_settings()
    index_path = index_store_path(workspace, settings)
    out_path = output or default_output_path(workspace, index_path)

    report = export_to_file(
        index_path,
        payload_store_path(payload_store, settings),
        out_path,
        composer_ids or None,
        settings=settings,
    )

    if json_output:
        print_json(report)
    else:
        render_report(report)
