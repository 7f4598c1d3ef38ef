from chat_transfer.commands.stores import index_store_path
from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_records
from chat_transfer.transfer.operations import list_records


def list_chats(workspace: str, json_output: bool) -> None:
    settings = load_settings()
    records = list_records(index_store_path(workspace, settings), settings=settings)

    if json_output:
        print_json(records)
    else:
        render_records(records)
