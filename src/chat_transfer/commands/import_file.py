from pathlib import Path

from chat_transfer.commands.stores import index_store_path, payload_store_path
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_report
from chat_transfer.transfer.operations import import_from_file


def import_file(input_path: Path, workspace: str, payload_store: Path | None, json_output: bool) -> None:
    settings = load_settings()
    report = import_from_file(
        input_path,
        index_store_path(workspace, settings),
        payload_store_path(payload_store, settings),
        settings=settings,
    )

    if json_output:
        print_json(report)
    else:
        render_report(report)
