from pathlib import Path

from chat_transfer.commands.stores import index_store_path, payload_store_path
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_report
from chat_transfer.models import TransferMode
from chat_transfer.transfer.operations import local_transfer


def transfer(
    source: str,
    target: str,
    mode: TransferMode,
    payload_store: Path | None,
    composer_ids: list[str],
    json_output: bool,
) -> None:
    settings = load_settings()
    report = local_transfer(
        index_store_path(source, settings),
        index_store_path(target, settings),
        payload_store_path(payload_store, settings),
        mode,
        composer_ids or None,
        settings=settings,
    )

    if json_output:
        print_json(report)
    else:
        render_report(report)
