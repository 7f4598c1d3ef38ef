from chat_transfer.commands.stores import index_store_path
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_report
from chat_transfer.transfer.operations import remove_from_index


def remove(workspace: str, composer_ids: list[str], json_output: bool) -> None:
    settings = load_settings()
    report = remove_from_index(index_store_path(workspace, settings), composer_ids, settings=settings)

    if json_output:
        print_json(report)
    else:
        render_report(report)
