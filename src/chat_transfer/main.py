from collections.abc import Sequence
from pathlib import Path
from sys import exit
from typing import Annotated, Any, final, override

import typer
from typer.core import TyperGroup

from chat_transfer.exceptions import TransferError
from chat_transfer.models import StoreKind, TransferMode

app: typer.Typer


@final
class TransferGroup(TyperGroup):
    @override
    def main(  # pyright: ignore[reportAny]
        self,
        args: Sequence[str] | None = None,
        prog_name: str | None = None,
        complete_var: str | None = None,
        standalone_mode: bool = True,
        windows_expand_args: bool = True,
        **extra: Any,  # pyright: ignore[reportAny, reportExplicitAny]
    ) -> Any:  # pyright: ignore[reportExplicitAny]
        try:
            return super().main(args, prog_name, complete_var, standalone_mode, windows_expand_args, **extra)  #  pyright: ignore[reportAny]
        except TransferError as e:
            typer.secho(f"Error: {e.message}", err=True, fg=typer.colors.RED)
            exit(e.exit_code)
        except Exception as e:
            typer.secho("Unexpected Internal Error", err=True, fg=typer.colors.RED)
            typer.echo(str(e), err=True)
            exit(1)


app = typer.Typer(cls=TransferGroup, no_args_is_help=True)

WorkspaceArg = Annotated[
    str,
    typer.Argument(help="Workspace state.vscdb path, workspace storage directory, or workspace folder name."),
]
PayloadStoreOption = Annotated[
    Path | None,
    typer.Option(
        "--global-db",
        help="Global state.vscdb holding composer payloads. Defaults to the Cursor profile's globalStorage.",
    ),
]
ComposerIdsOption = Annotated[
    list[str] | None,
    typer.Option("--id", help="Composer id to include. Repeat for several; omit for all."),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Print the result as JSON.")]


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress and debug details to stderr.")] = False,
) -> None:
    """
    Export, clone and merge Cursor composer chats between state.vscdb stores.
    """
    from chat_transfer.console import configure_logging

    configure_logging(verbose)


@app.command("export")
def export(
    workspace: WorkspaceArg,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Export file to write. Defaults to <workspace>.cursor-chat.json."),
    ] = None,
    payload_store: PayloadStoreOption = None,
    composer_ids: ComposerIdsOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Export a workspace's chats, with their content, to a portable file.
    """
    from chat_transfer.commands import export

    export.export(workspace, output, payload_store, composer_ids or [], json_output)


@app.command("import")
def import_(
    input_path: Annotated[Path, typer.Argument(help="Export file to import.")],
    workspace: WorkspaceArg,
    payload_store: PayloadStoreOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Import an export file into a workspace under fresh composer ids.

    Both stores are backed up first; importing the same file twice creates two copies.
    """
    from chat_transfer.commands import import_file

    import_file.import_file(input_path, workspace, payload_store, json_output)


@app.command("transfer")
def transfer(
    source: Annotated[str, typer.Argument(help="Source workspace (path or name).")],
    target: Annotated[str, typer.Argument(help="Target workspace (path or name).")],
    mode: Annotated[
        TransferMode,
        typer.Option(
            "--mode",
            "-m",
            help="copy: clone under new ids. cut: move, removing from the source. ref: share the same chats.",
        ),
    ] = TransferMode.COPY,
    payload_store: PayloadStoreOption = None,
    composer_ids: ComposerIdsOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Move chats between two workspaces of the same Cursor profile.
    """
    from chat_transfer.commands import transfer

    transfer.transfer(source, target, mode, payload_store, composer_ids or [], json_output)


@app.command("remove")
def remove(
    workspace: WorkspaceArg,
    composer_ids: Annotated[list[str], typer.Argument(help="Composer ids to detach from the workspace.")],
    json_output: JsonOption = False,
) -> None:
    """
    Detach chats from a workspace index. Their content stays in the global store.
    """
    from chat_transfer.commands import remove

    remove.remove(workspace, composer_ids, json_output)


@app.command("restore")
def restore(
    backup: Annotated[Path, typer.Argument(help="Backup file written before a failed merge.")],
    store: Annotated[Path, typer.Argument(help="state.vscdb to overwrite with the backup.")],
    role: Annotated[
        StoreKind,
        typer.Option("--role", help="Whether the store is a workspace index or the global payload store."),
    ] = StoreKind.INDEX,
    json_output: JsonOption = False,
) -> None:
    """
    Restore a store from a retained backup.
    """
    from chat_transfer.commands import restore

    restore.restore(backup, store, role, json_output)


@app.command("list-chats")
def list_chats(workspace: WorkspaceArg, json_output: JsonOption = False) -> None:
    """
    List the chats in a workspace index.
    """
    from chat_transfer.commands import list_chats

    list_chats.list_chats(workspace, json_output)


@app.command("workspaces")
def workspaces(
    limit: Annotated[int, typer.Option("--limit", "-n", min=1, help="Maximum number of workspaces to show.")] = 20,
    json_output: JsonOption = False,
) -> None:
    """
    List workspace stores, most recently used first.
    """
    from chat_transfer.commands import workspaces

    workspaces.workspaces(limit, json_output)


if __name__ == "__main__":
    app()
