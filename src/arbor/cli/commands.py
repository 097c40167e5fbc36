"""CLI commands for arbor.

One-shot commands:
- list: Show stored documents
- show: Print a document outline
- rename: Rename a document
- delete: Delete a document

Interactive:
- edit: Line-oriented outline editor driven by the session controller
"""

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from arbor.config.app_config import (
    AppConfig,
    get_documents_dir,
    get_log_level,
    load_app_config,
)
from arbor.core.document_store import DocumentStore, StorageError
from arbor.core.forest import Direction, NodeView, Placement
from arbor.core.session import (
    CommandResult,
    QuitChoice,
    SessionController,
    SessionState,
)
from arbor.logging_config import setup_logging
from arbor.utils.validators import DocumentNameError, resolve_document_name

app = typer.Typer(
    name="arbor",
    help="Terminal outline editor for ordered forests of labeled trees.",
    no_args_is_help=True,
)

console = Console()

PLACEMENT_WORDS = {
    "before": Placement.PRIOR_SIBLING,
    "after": Placement.NEXT_SIBLING,
    "parent": Placement.AS_PARENT,
    "child": Placement.AS_CHILD,
}

EDITING_HELP = [
    ("insert LABEL", "Insert with the default placement (a root if nothing is selected)"),
    ("before|after|parent|child LABEL", "Insert relative to the selection"),
    ("N  /  select N", "Select the node at index N"),
    ("deselect", "Clear the selection"),
    ("edit LABEL", "Replace the selected label"),
    ("delete", "Delete the selected subtree"),
    ("promote / demote", "Move out of the parent / into the previous sibling"),
    ("raise / flatten", "Adopt all siblings / release all children"),
    ("up / down", "Swap with the previous / next sibling"),
    ("move", "Start moving the selected subtree"),
    ("to N [before|after|parent|child]", "Preview the move at node N"),
    ("done / cancel", "Commit / cancel the move"),
    ("save / rename", "Save the document / rename it"),
    ("load", "Go back to the document list"),
    ("quit", "Leave the editor"),
]

FILE_SELECT_HELP = [
    ("open NAME|N", "Open a document by name, prefix or list number"),
    ("new", "Start a new document"),
    ("rename NAME|N", "Rename a document"),
    ("delete NAME|N", "Delete a document"),
    ("list", "Show the documents again"),
    ("quit", "Leave arbor"),
]


@app.callback()
def main() -> None:
    """Terminal outline editor."""
    setup_logging(get_log_level())


def _open_store(config: AppConfig) -> DocumentStore:
    return DocumentStore(get_documents_dir(config), storage=config.storage)


def _resolve_name_or_exit(store: DocumentStore, prefix: str) -> str:
    """Resolve a document name prefix, or exit with a helpful error."""
    candidates = store.list_documents()
    try:
        return resolve_document_name(prefix, candidates)
    except DocumentNameError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        if candidates:
            console.print("\nAvailable documents:")
            for c in candidates:
                console.print(f"  - {escape(c)}")
        raise typer.Exit(code=1)


# =============================================================================
# RENDERING
# =============================================================================


def _render_outline(
    title: str,
    rows: tuple[NodeView, ...],
    selected_index: int | None = None,
    show_indices: bool = True,
) -> Tree:
    """Build a rich Tree from pre-order rows."""
    tree = Tree(f"[bold]{escape(title)}[/bold]", guide_style="dim")
    branches: list[Tree] = [tree]
    for row in rows:
        del branches[row.depth + 1:]
        text = escape(row.label)
        if show_indices:
            text = f"[dim]{row.index}[/dim] {text}"
        if row.index == selected_index:
            text = f"[reverse]{text}[/reverse]"
        branches.append(branches[-1].add(text))
    return tree


def _documents_table(store: DocumentStore, names: list[str]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Status")
    for i, name in enumerate(names, 1):
        if store.is_locked(name):
            status = "[yellow]open elsewhere[/yellow]"
        else:
            status = "[green]available[/green]"
        table.add_row(str(i), escape(name), status)
    return table


def _help_table(entries: list[tuple[str, str]]) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column()
    for command, description in entries:
        table.add_row(escape(command), description)
    return table


def _print_result(result: CommandResult) -> None:
    if result.success:
        console.print(f"[green]✓ {escape(result.message)}[/green]")
    else:
        console.print(f"[red]✗ {escape(result.message)}[/red]")


# =============================================================================
# ONE-SHOT COMMANDS
# =============================================================================


@app.command(name="list")
def list_documents() -> None:
    """List stored documents."""
    config = load_app_config()
    with _open_store(config) as store:
        names = store.list_documents()
        if not names:
            console.print("[yellow]No documents yet[/yellow]")
            console.print("  Use: arbor edit --new")
            return
        console.print(f"\n[bold]Documents ({len(names)}):[/bold]\n")
        console.print(_documents_table(store, names))


@app.command()
def show(
    name: str = typer.Argument(..., help="Document name (or unique prefix)"),
    indices: bool = typer.Option(False, "--indices", "-i", help="Show node indices"),
) -> None:
    """Print a document outline."""
    config = load_app_config()
    with _open_store(config) as store:
        name = _resolve_name_or_exit(store, name)
        try:
            document = store.load(name)
        except StorageError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
        try:
            rows = tuple(document.forest.iter_preorder())
            if not rows:
                console.print(f"[bold]{escape(name)}[/bold] [dim](empty)[/dim]")
            else:
                console.print(_render_outline(name, rows, show_indices=indices))
        finally:
            store.unload(document)


@app.command()
def rename(
    old: str = typer.Argument(..., help="Current document name (or unique prefix)"),
    new: str = typer.Argument(..., help="New document name"),
) -> None:
    """Rename a document."""
    config = load_app_config()
    with _open_store(config) as store:
        old = _resolve_name_or_exit(store, old)
        try:
            store.rename(old, new)
        except (DocumentNameError, StorageError) as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
    console.print(f"[green]✓ Renamed '{escape(old)}' to '{escape(new)}'[/green]")


@app.command()
def delete(
    name: str = typer.Argument(..., help="Document name (or unique prefix)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a document."""
    config = load_app_config()
    with _open_store(config) as store:
        name = _resolve_name_or_exit(store, name)
        if not yes and not typer.confirm(f"Delete document '{name}'?", default=False):
            console.print("[yellow]⚠ Cancelled[/yellow]")
            return
        try:
            store.delete(name)
        except StorageError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise typer.Exit(code=1)
    console.print(f"[green]✓ Deleted '{escape(name)}'[/green]")


# =============================================================================
# INTERACTIVE EDITOR
# =============================================================================


@app.command()
def edit(
    name: str | None = typer.Argument(None, help="Document to open (or unique prefix)"),
    new: bool = typer.Option(False, "--new", "-n", help="Start a new document"),
) -> None:
    """Open the interactive outline editor."""
    config = load_app_config()
    with _open_store(config) as store:
        controller = SessionController(store, confirm_delete=config.editor.confirm_delete)
        try:
            if name is not None:
                result = controller.open_document(name)
                if not result.success:
                    _print_result(result)
                    raise typer.Exit(code=1)
            elif new:
                controller.new_document()
            _run_editor(controller, config)
        finally:
            controller.close()


def _run_editor(controller: SessionController, config: AppConfig) -> None:
    """Read commands until the session exits or input ends."""
    default_placement = _default_placement(config)
    show_indices = config.editor.show_indices
    needs_render = True

    while controller.state is not SessionState.EXITED:
        if needs_render:
            _render_state(controller, show_indices)
        label = _prompt_label(controller)
        suffix = " " if label.endswith(("?", ":")) else ": "
        try:
            line = console.input(f"[bold]{escape(label)}[/bold]{suffix}")
        except (EOFError, KeyboardInterrupt):
            _handle_end_of_input(controller)
            return

        result = _dispatch(controller, line.strip(), default_placement)
        if result is None:
            needs_render = False
            continue
        _print_result(result)
        needs_render = result.success


def _default_placement(config: AppConfig) -> Placement:
    try:
        return Placement[config.editor.default_placement.upper()]
    except KeyError:
        return Placement.NEXT_SIBLING


def _handle_end_of_input(controller: SessionController) -> None:
    if controller.dirty:
        console.print("\n[yellow]⚠ Input ended: unsaved changes were discarded[/yellow]")
    else:
        console.print()


def _prompt_label(controller: SessionController) -> str:
    status = controller.status()
    if status.prompt:
        return status.prompt
    if status.state is SessionState.FILE_SELECT:
        return "arbor"
    name = status.document or "untitled"
    marker = "*" if status.dirty else ""
    mode = " (moving)" if status.moving else ""
    return f"{name}{marker}{mode}"


def _render_state(controller: SessionController, show_indices: bool) -> None:
    status = controller.status()
    if status.state is SessionState.FILE_SELECT:
        names = controller.documents()
        if names:
            console.print(f"\n[bold]Documents ({len(names)}):[/bold]")
            console.print(_documents_table(controller.store, names))
        else:
            console.print("\n[yellow]No documents yet[/yellow] (type 'new')")
        return
    if status.state is SessionState.EDITING:
        title = status.document or "untitled"
        if status.rows:
            console.print(_render_outline(title, status.rows, status.selected_index, show_indices))
        else:
            console.print(f"[bold]{escape(title)}[/bold] [dim](empty, type 'insert LABEL')[/dim]")


def _dispatch(
    controller: SessionController,
    line: str,
    default_placement: Placement,
) -> CommandResult | None:
    """Route one input line to the controller. None means nothing to report."""
    state = controller.state

    if state is SessionState.CONFIRMING:
        answer = line.lower()
        if answer in ("y", "yes"):
            return controller.confirm(True)
        if answer in ("n", "no", ""):
            return controller.confirm(False)
        console.print("[yellow]⚠ Answer y or n[/yellow]")
        return None

    if state is SessionState.RENAMING:
        if not line:
            return controller.cancel_rename()
        return controller.submit_name(line)

    if state is SessionState.QUITTING:
        choice = {
            "s": QuitChoice.SAVE,
            "save": QuitChoice.SAVE,
            "d": QuitChoice.DISCARD,
            "discard": QuitChoice.DISCARD,
            "c": QuitChoice.CANCEL,
            "cancel": QuitChoice.CANCEL,
        }.get(line.lower())
        if choice is None:
            console.print("[yellow]⚠ Answer s, d or c[/yellow]")
            return None
        return controller.resolve_quit(choice)

    if not line:
        return None
    command, _, arg = line.partition(" ")
    command = command.lower()
    arg = arg.strip()

    if command in ("help", "?"):
        entries = FILE_SELECT_HELP if state is SessionState.FILE_SELECT else EDITING_HELP
        console.print(_help_table(entries))
        return None
    if command in ("quit", "q"):
        return controller.quit()

    if state is SessionState.FILE_SELECT:
        return _dispatch_file_select(controller, command, arg)
    return _dispatch_editing(controller, command, arg, default_placement)


def _document_argument(controller: SessionController, arg: str) -> str:
    """Map a list number to a document name; anything else is a name."""
    names = controller.documents()
    if arg.isdigit() and arg not in names and 1 <= int(arg) <= len(names):
        return names[int(arg) - 1]
    return arg


def _dispatch_file_select(
    controller: SessionController, command: str, arg: str
) -> CommandResult | None:
    if command == "list":
        _render_state(controller, show_indices=True)
        return None
    if command == "new":
        return controller.new_document()
    if command in ("open", "delete", "rename") and not arg:
        console.print(f"[yellow]⚠ Usage: {command} NAME[/yellow]")
        return None
    if command == "open":
        return controller.open_document(_document_argument(controller, arg))
    if command == "delete":
        return controller.request_delete_file(_document_argument(controller, arg))
    if command == "rename":
        return controller.request_rename(_document_argument(controller, arg))
    console.print(f"[yellow]⚠ Unknown command '{escape(command)}' (type 'help')[/yellow]")
    return None


def _dispatch_editing(
    controller: SessionController,
    command: str,
    arg: str,
    default_placement: Placement,
) -> CommandResult | None:
    if command.isdigit():
        return controller.select_index(int(command))
    if command == "select":
        if not arg.isdigit():
            console.print("[yellow]⚠ Usage: select N[/yellow]")
            return None
        return controller.select_index(int(arg))
    if command in ("insert", "i"):
        return controller.insert(default_placement, arg)
    if command in PLACEMENT_WORDS:
        return controller.insert(PLACEMENT_WORDS[command], arg)
    if command == "to":
        return _relocate(controller, arg, default_placement)

    simple = {
        "deselect": controller.clear_selection,
        "delete": controller.delete,
        "promote": controller.promote,
        "demote": controller.demote,
        "raise": controller.raise_node,
        "flatten": controller.flatten,
        "up": lambda: controller.swap(Direction.UP),
        "down": lambda: controller.swap(Direction.DOWN),
        "move": controller.begin_move,
        "done": controller.commit_move,
        "cancel": controller.cancel_move,
        "save": controller.save,
        "rename": controller.request_rename,
        "load": controller.request_load_other,
    }
    if command == "edit":
        return controller.edit(arg)
    if command in simple:
        return simple[command]()
    console.print(f"[yellow]⚠ Unknown command '{escape(command)}' (type 'help')[/yellow]")
    return None


def _relocate(
    controller: SessionController, arg: str, default_placement: Placement
) -> CommandResult | None:
    index, _, word = arg.partition(" ")
    word = word.strip().lower()
    if not index.isdigit() or (word and word not in PLACEMENT_WORDS):
        console.print("[yellow]⚠ Usage: to N [before|after|parent|child][/yellow]")
        return None
    destination = controller.forest.handle_at(int(index))
    if destination is None:
        console.print(f"[yellow]⚠ No node at index {index}[/yellow]")
        return None
    placement = PLACEMENT_WORDS[word] if word else default_placement
    return controller.relocate(destination, placement)


if __name__ == "__main__":
    app()
