from pathlib import Path

from chat_transfer.config import load_settings
from chat_transfer.console import print_json, render_report
from chat_transfer.keys import StoreRole
from chat_transfer.models import StoreKind
from chat_transfer.transfer.operations import restore as restore_store


def _role_of(kind: StoreKind) -> StoreRole:
    match kind:
        case StoreKind.INDEX:
            return "index"
        case StoreKind.PAYLOAD:
            return "payload"


def restore(backup: Path, store: Path, kind: StoreKind, json_output: bool) -> None:
    report = restore_store(backup, store.expanduser(), _role_of(kind), settings=load_settings())

    if json_output:
        print_json(report)
    else:
        render_report(report)
