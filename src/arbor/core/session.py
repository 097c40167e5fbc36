"""Session controller module.

Maps user actions onto forest edits and document store calls, and tracks
what the user is currently doing.

State machine:
    FILE_SELECT -> EDITING (open / new)
    EDITING -> CONFIRMING (delete node)      FILE_SELECT -> CONFIRMING (delete file)
    EDITING -> RENAMING (rename, first save) FILE_SELECT -> RENAMING (rename file)
    EDITING -> QUITTING (quit or load-other with unsaved changes)
    any prompt -> its prior state on reject / cancel
    FILE_SELECT / EDITING / QUITTING -> EXITED

While EDITING, the `moving` flag is set between begin_move and
commit_move / cancel_move; only relocate, commit and cancel are accepted
in that window.

Every public command returns a CommandResult. Structural, naming and
storage errors are reported through it and never raised to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from arbor.core.document_store import Document, DocumentStore, StorageError
from arbor.core.forest import (
    Direction,
    Forest,
    MoveToken,
    NodeHandle,
    NodeView,
    Placement,
    StaleHandleError,
    StructuralError,
)
from arbor.utils.validators import DocumentNameError, resolve_document_name

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    """Top-level state of an editing session."""

    FILE_SELECT = "file_select"
    EDITING = "editing"
    CONFIRMING = "confirming"
    RENAMING = "renaming"
    QUITTING = "quitting"
    EXITED = "exited"


class QuitChoice(str, Enum):
    """Answer to the unsaved-changes prompt."""

    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


@dataclass
class CommandResult:
    """Outcome of one session command."""

    success: bool
    message: str
    state: SessionState


@dataclass(frozen=True)
class SessionStatus:
    """Read-only snapshot for the presentation layer."""

    state: SessionState
    document: str | None
    rows: tuple[NodeView, ...]
    selection: NodeHandle | None
    selected_index: int | None
    dirty: bool
    moving: bool
    message: str
    prompt: str | None = None


@dataclass
class _Confirmation:
    kind: str  # "delete_node" | "delete_file"
    target: NodeHandle | str
    description: str
    return_state: SessionState


@dataclass
class _RenameRequest:
    kind: str  # "rename_file" | "rename_document" | "save_as"
    return_state: SessionState
    target: str | None = None
    # Where to go after a successful save_as: None (keep editing),
    # "exit" or "file_select"
    then: str | None = None


class SessionController:
    """State machine driving one interactive arbor session."""

    def __init__(self, store: DocumentStore, confirm_delete: bool = True):
        self.store = store
        self.confirm_delete = confirm_delete

        self._state = SessionState.FILE_SELECT
        self._forest = Forest()
        self._document: Document | None = None
        self._draft_dirty = False
        self._selection: NodeHandle | None = None
        self._move: MoveToken | None = None
        self._move_relocated = False
        self._confirmation: _Confirmation | None = None
        self._rename: _RenameRequest | None = None
        self._quit_then: str | None = None
        self._message = ""

    # =========================================================================
    # Read-only surface
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def forest(self) -> Forest:
        return self._forest

    @property
    def document_name(self) -> str | None:
        return self._document.name if self._document else None

    @property
    def dirty(self) -> bool:
        if self._document is not None:
            return self._document.dirty
        return self._draft_dirty

    @property
    def moving(self) -> bool:
        return self._move is not None

    @property
    def selection(self) -> NodeHandle | None:
        return self._selection

    @property
    def message(self) -> str:
        return self._message

    def status(self) -> SessionStatus:
        selected_index = None
        if self._selection is not None and self._forest.contains(self._selection):
            selected_index = self._forest.index_of(self._selection)
        return SessionStatus(
            state=self._state,
            document=self.document_name,
            rows=tuple(self._forest.iter_preorder()) if self._in_document() else (),
            selection=self._selection,
            selected_index=selected_index,
            dirty=self.dirty,
            moving=self.moving,
            message=self._message,
            prompt=self._prompt(),
        )

    def documents(self) -> list[str]:
        """Names of the documents available for opening."""
        return self.store.list_documents()

    # =========================================================================
    # FILE_SELECT
    # =========================================================================

    def open_document(self, name: str) -> CommandResult:
        if (failed := self._require(SessionState.FILE_SELECT)) is not None:
            return failed
        try:
            name = resolve_document_name(name, self.store.list_documents())
            document = self.store.load(name)
        except (DocumentNameError, StorageError) as e:
            return self._fail(str(e))

        self._enter_document(document.forest, document)
        return self._ok(f"Opened '{name}'.")

    def new_document(self) -> CommandResult:
        if (failed := self._require(SessionState.FILE_SELECT)) is not None:
            return failed
        self._enter_document(Forest(), None)
        return self._ok("New document. Save to give it a name.")

    def request_delete_file(self, name: str) -> CommandResult:
        if (failed := self._require(SessionState.FILE_SELECT)) is not None:
            return failed
        try:
            name = resolve_document_name(name, self.store.list_documents())
        except DocumentNameError as e:
            return self._fail(str(e))
        self._confirmation = _Confirmation(
            kind="delete_file",
            target=name,
            description=f"Delete document '{name}'?",
            return_state=SessionState.FILE_SELECT,
        )
        self._transition(SessionState.CONFIRMING)
        return self._ok(self._confirmation.description)

    # =========================================================================
    # EDITING: general commands
    # =========================================================================

    def insert(self, placement: Placement, label: str) -> CommandResult:
        """Insert a node relative to the selection, or a root if none."""
        if (failed := self._require_editing()) is not None:
            return failed
        label = label.strip()
        if not label:
            return self._fail("Label cannot be empty.")

        if self._selection is None:
            handle = self._forest.insert_root(label)
        else:
            try:
                handle = self._forest.insert(self._selection, placement, label)
            except StructuralError as e:
                return self._structural_failure(e)

        self._selection = handle
        self._touch()
        return self._ok(f"Inserted '{label}'.")

    def select(self, handle: NodeHandle) -> CommandResult:
        if (failed := self._require_editing()) is not None:
            return failed
        if not self._forest.contains(handle):
            return self._fail(str(StaleHandleError(handle)))
        self._selection = handle
        return self._ok(f"Selected '{self._forest.label(handle)}'.")

    def select_index(self, index: int) -> CommandResult:
        """Select the node at a pre-order index of the displayed outline."""
        if (failed := self._require_editing()) is not None:
            return failed
        handle = self._forest.handle_at(index)
        if handle is None:
            return self._fail(f"No node at index {index}.")
        return self.select(handle)

    def clear_selection(self) -> CommandResult:
        if (failed := self._require_editing()) is not None:
            return failed
        self._selection = None
        return self._ok("Selection cleared.")

    # =========================================================================
    # EDITING: targeted commands
    # =========================================================================

    def edit(self, label: str) -> CommandResult:
        label = label.strip()
        if not label:
            return self._fail("Label cannot be empty.")
        return self._edit_selected(
            lambda h: self._forest.edit_label(h, label), f"Label set to '{label}'."
        )

    def delete(self) -> CommandResult:
        """Delete the selected subtree, asking for confirmation first."""
        if (failed := self._require_selection()) is not None:
            return failed
        target = self._selection
        label = self._forest.label(target)
        if not self.confirm_delete:
            return self._delete_node(target)

        self._confirmation = _Confirmation(
            kind="delete_node",
            target=target,
            description=f"Delete '{label}' and its subtree?",
            return_state=SessionState.EDITING,
        )
        self._transition(SessionState.CONFIRMING)
        return self._ok(self._confirmation.description)

    def promote(self) -> CommandResult:
        return self._edit_selected(self._forest.promote, "Promoted.")

    def demote(self) -> CommandResult:
        return self._edit_selected(self._forest.demote, "Demoted.")

    def raise_node(self) -> CommandResult:
        return self._edit_selected(self._forest.raise_node, "Raised.")

    def flatten(self) -> CommandResult:
        return self._edit_selected(self._forest.flatten, "Flattened.")

    def swap(self, direction: Direction) -> CommandResult:
        word = "up" if direction is Direction.UP else "down"
        return self._edit_selected(
            lambda h: self._forest.swap(h, direction), f"Moved {word}."
        )

    # =========================================================================
    # EDITING: multi-step move
    # =========================================================================

    def begin_move(self) -> CommandResult:
        if (failed := self._require_selection()) is not None:
            return failed
        label = self._forest.label(self._selection)
        try:
            self._move = self._forest.begin_move(self._selection)
        except StructuralError as e:
            return self._structural_failure(e)
        self._move_relocated = False
        self._selection = self._move.node
        logger.info("move_begun", label=label)
        return self._ok(f"Moving '{label}'. Pick a destination.")

    def relocate(self, destination: NodeHandle, placement: Placement) -> CommandResult:
        if (failed := self._require_moving()) is not None:
            return failed
        try:
            self._forest.relocate_move(self._move, destination, placement)
        except StructuralError as e:
            return self._fail(str(e))
        self._move_relocated = True
        return self._ok("Preview updated. Commit or cancel the move.")

    def commit_move(self) -> CommandResult:
        if (failed := self._require_moving()) is not None:
            return failed
        self._selection = self._forest.commit_move(self._move)
        if self._move_relocated:
            self._touch()
        self._move = None
        return self._ok("Move committed.")

    def cancel_move(self) -> CommandResult:
        if (failed := self._require_moving()) is not None:
            return failed
        self._selection = self._forest.cancel_move(self._move)
        self._move = None
        return self._ok("Move cancelled.")

    # =========================================================================
    # EDITING: document commands
    # =========================================================================

    def save(self) -> CommandResult:
        if (failed := self._require_editing()) is not None:
            return failed
        if self._document is None:
            return self._start_rename(
                _RenameRequest(kind="save_as", return_state=SessionState.EDITING)
            )
        return self._save_document()

    def request_rename(self, name: str | None = None) -> CommandResult:
        """Rename a file (FILE_SELECT) or the open document (EDITING)."""
        if self._state is SessionState.FILE_SELECT:
            if not name:
                return self._fail("Which document should be renamed?")
            try:
                name = resolve_document_name(name, self.store.list_documents())
            except DocumentNameError as e:
                return self._fail(str(e))
            return self._start_rename(
                _RenameRequest(
                    kind="rename_file",
                    return_state=SessionState.FILE_SELECT,
                    target=name,
                )
            )

        if (failed := self._require_editing()) is not None:
            return failed
        if self._document is None:
            return self._start_rename(
                _RenameRequest(kind="save_as", return_state=SessionState.EDITING)
            )
        return self._start_rename(
            _RenameRequest(
                kind="rename_document",
                return_state=SessionState.EDITING,
                target=self._document.name,
            )
        )

    def request_load_other(self) -> CommandResult:
        """Go back to the document list, prompting first if unsaved."""
        if (failed := self._require_editing()) is not None:
            return failed
        if self.dirty:
            self._quit_then = "file_select"
            self._transition(SessionState.QUITTING)
            return self._ok("Unsaved changes: save, discard or cancel?")
        self._close_document()
        self._transition(SessionState.FILE_SELECT)
        return self._ok("Choose a document.")

    def quit(self) -> CommandResult:
        if self._state is SessionState.FILE_SELECT:
            self._transition(SessionState.EXITED)
            return self._ok("Goodbye.")
        if (failed := self._require_editing()) is not None:
            return failed
        if self.dirty:
            self._quit_then = "exit"
            self._transition(SessionState.QUITTING)
            return self._ok("Unsaved changes: save, discard or cancel?")
        self._close_document()
        self._transition(SessionState.EXITED)
        return self._ok("Goodbye.")

    # =========================================================================
    # Prompts
    # =========================================================================

    def confirm(self, accept: bool) -> CommandResult:
        if (failed := self._require(SessionState.CONFIRMING)) is not None:
            return failed
        pending, self._confirmation = self._confirmation, None
        self._transition(pending.return_state)
        if not accept:
            return self._ok("Cancelled.")

        if pending.kind == "delete_node":
            return self._delete_node(pending.target)

        try:
            self.store.delete(pending.target)
        except StorageError as e:
            return self._fail(str(e))
        return self._ok(f"Deleted '{pending.target}'.")

    def submit_name(self, name: str) -> CommandResult:
        if (failed := self._require(SessionState.RENAMING)) is not None:
            return failed
        request = self._rename

        if request.kind in ("rename_file", "rename_document") and name == request.target:
            self._rename = None
            self._transition(request.return_state)
            return self._ok("Name unchanged.")

        try:
            if request.kind == "rename_file":
                self.store.rename(request.target, name)
            elif request.kind == "rename_document":
                self.store.rename(request.target, name, self._document)
            else:
                self._document = self.store.save_new(name, self._forest)
                self._draft_dirty = False
        except (DocumentNameError, StorageError) as e:
            # Stay in RENAMING so the user can try another name
            return self._fail(str(e))

        self._rename = None
        if request.kind == "save_as":
            return self._after_save(request.then, f"Saved as '{name}'.")
        self._transition(request.return_state)
        return self._ok(f"Renamed '{request.target}' to '{name}'.")

    def cancel_rename(self) -> CommandResult:
        if (failed := self._require(SessionState.RENAMING)) is not None:
            return failed
        request, self._rename = self._rename, None
        self._transition(request.return_state)
        return self._ok("Rename cancelled.")

    def resolve_quit(self, choice: QuitChoice) -> CommandResult:
        if (failed := self._require(SessionState.QUITTING)) is not None:
            return failed
        then = self._quit_then

        if choice is QuitChoice.CANCEL:
            self._quit_then = None
            self._transition(SessionState.EDITING)
            return self._ok("Back to editing.")

        if choice is QuitChoice.DISCARD:
            self._quit_then = None
            return self._leave(then, "Changes discarded.")

        if self._document is None:
            return self._start_rename(
                _RenameRequest(
                    kind="save_as", return_state=SessionState.QUITTING, then=then
                )
            )
        try:
            self.store.save(self._document)
        except StorageError as e:
            # Stay in QUITTING so the user can discard or cancel
            return self._fail(str(e))
        self._quit_then = None
        return self._leave(then, f"Saved '{self._document.name}'.")

    def close(self) -> None:
        """Release the open document's lock, whatever the state."""
        if self._move is not None:
            self._forest.cancel_move(self._move)
            self._move = None
        self._close_document()

    # =========================================================================
    # Internals
    # =========================================================================

    def _enter_document(self, forest: Forest, document: Document | None) -> None:
        self._forest = forest
        self._document = document
        self._draft_dirty = False
        self._selection = None
        self._move = None
        self._transition(SessionState.EDITING)

    def _close_document(self) -> None:
        if self._document is not None:
            self.store.unload(self._document)
        self._document = None
        self._forest = Forest()
        self._draft_dirty = False
        self._selection = None

    def _leave(self, then: str | None, message: str) -> CommandResult:
        self._close_document()
        if then == "file_select":
            self._transition(SessionState.FILE_SELECT)
        else:
            self._transition(SessionState.EXITED)
        return self._ok(message)

    def _after_save(self, then: str | None, message: str) -> CommandResult:
        if then is None:
            self._transition(SessionState.EDITING)
            return self._ok(message)
        self._quit_then = None
        return self._leave(then, message)

    def _save_document(self) -> CommandResult:
        try:
            written = self.store.save(self._document)
        except StorageError as e:
            return self._fail(str(e))
        if not written:
            return self._ok("No changes to save.")
        return self._ok(f"Saved '{self._document.name}'.")

    def _start_rename(self, request: _RenameRequest) -> CommandResult:
        self._rename = request
        self._transition(SessionState.RENAMING)
        return self._ok("Enter a document name.")

    def _delete_node(self, target: NodeHandle) -> CommandResult:
        try:
            label = self._forest.label(target)
            self._selection = self._forest.delete(target)
        except StructuralError as e:
            return self._structural_failure(e)
        self._touch()
        return self._ok(f"Deleted '{label}'.")

    def _edit_selected(
        self, operation: Callable[[NodeHandle], NodeHandle], message: str
    ) -> CommandResult:
        if (failed := self._require_selection()) is not None:
            return failed
        try:
            self._selection = operation(self._selection)
        except StructuralError as e:
            return self._structural_failure(e)
        self._touch()
        return self._ok(message)

    def _structural_failure(self, error: StructuralError) -> CommandResult:
        if isinstance(error, StaleHandleError):
            self._selection = None
        return self._fail(str(error))

    def _touch(self) -> None:
        if self._document is not None:
            self._document.mark_dirty()
        else:
            self._draft_dirty = True

    def _require(self, *states: SessionState) -> CommandResult | None:
        if self._state in states:
            return None
        return self._fail(f"Not available while {self._state.value.replace('_', ' ')}.")

    def _require_editing(self) -> CommandResult | None:
        if (failed := self._require(SessionState.EDITING)) is not None:
            return failed
        if self._move is not None:
            return self._fail("Finish the move first: commit or cancel it.")
        return None

    def _require_selection(self) -> CommandResult | None:
        if (failed := self._require_editing()) is not None:
            return failed
        if self._selection is None:
            return self._fail("No node selected.")
        if not self._forest.contains(self._selection):
            self._selection = None
            return self._fail(str(StaleHandleError()))
        return None

    def _require_moving(self) -> CommandResult | None:
        if (failed := self._require(SessionState.EDITING)) is not None:
            return failed
        if self._move is None:
            return self._fail("No move in progress.")
        return None

    def _in_document(self) -> bool:
        if self._state in (SessionState.EDITING, SessionState.QUITTING):
            return True
        if self._state is SessionState.CONFIRMING and self._confirmation:
            return self._confirmation.kind == "delete_node"
        if self._state is SessionState.RENAMING and self._rename:
            return self._rename.kind != "rename_file"
        return False

    def _prompt(self) -> str | None:
        if self._state is SessionState.CONFIRMING and self._confirmation:
            return self._confirmation.description
        if self._state is SessionState.RENAMING and self._rename:
            if self._rename.kind == "save_as":
                return "Save as:"
            return f"Rename '{self._rename.target}' to:"
        if self._state is SessionState.QUITTING:
            return "Unsaved changes: (s)ave, (d)iscard or (c)ancel?"
        return None

    def _transition(self, state: SessionState) -> None:
        if state is not self._state:
            logger.info("session_state_changed", old=self._state.value, new=state.value)
        self._state = state

    def _ok(self, message: str) -> CommandResult:
        self._message = message
        return CommandResult(success=True, message=message, state=self._state)

    def _fail(self, message: str) -> CommandResult:
        self._message = message
        logger.debug("command_rejected", state=self._state.value, reason=message)
        return CommandResult(success=False, message=message, state=self._state)
