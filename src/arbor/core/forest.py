"""Forest model module.

Responsibilities:
- Own the nodes of one outline document (an ordered forest of labeled trees)
- Implement the structural edit algebra: insert, delete, edit, move,
  promote, demote, raise, flatten, swap
- Hand out checked node handles that go stale when their node is removed

Storage layout:
- Nodes live in an arena of slots indexed by stable integers
- Each slot keeps its parent index and an ordered list of child indices
- Edits relink indices; a node is never copied, so no node can end up
  reachable from two places

No I/O happens here. Every operation validates before mutating, so a
StructuralError always leaves the forest unchanged.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Iterator, Sequence

import structlog

logger = structlog.get_logger(__name__)

# Nested tree form used by the codec and by tests: (label, [children...])
LabelTree = tuple[str, list["LabelTree"]]


# =============================================================================
# ERRORS
# =============================================================================


class StructuralError(Exception):
    """Base exception for rejected structural edits."""

    pass


class StaleHandleError(StructuralError):
    """Raised when a handle no longer refers to an attached node."""

    def __init__(self, handle: Any = None):
        self.handle = handle
        super().__init__("Node not found (it was deleted or moved away).")


class NoParentError(StructuralError):
    """Raised when promoting a root node."""

    def __init__(self):
        super().__init__("Cannot promote: node is already a root.")


class NoPrecedingSiblingError(StructuralError):
    """Raised when an edit needs a previous sibling and there is none."""

    def __init__(self, action: str = "demote"):
        self.action = action
        super().__init__(f"Cannot {action}: node has no preceding sibling.")


class NoFollowingSiblingError(StructuralError):
    """Raised when an edit needs a next sibling and there is none."""

    def __init__(self, action: str = "move down"):
        self.action = action
        super().__init__(f"Cannot {action}: node has no following sibling.")


class NoSiblingsError(StructuralError):
    """Raised when raising a node that has no siblings."""

    def __init__(self):
        super().__init__("Cannot raise: node has no siblings.")


class NoChildrenError(StructuralError):
    """Raised when flattening a leaf."""

    def __init__(self):
        super().__init__("Cannot flatten: node has no children.")


class InvalidDestinationError(StructuralError):
    """Raised when a move destination lies inside the moving subtree."""

    def __init__(self):
        super().__init__("Invalid destination: a node cannot move into its own subtree.")


class MoveInProgressError(StructuralError):
    """Raised when the forest is edited while a moved subtree is held."""

    def __init__(self):
        super().__init__("Finish the move first: commit or cancel it.")


# =============================================================================
# PUBLIC TYPES
# =============================================================================


class Placement(Enum):
    """Where a new or moved node goes relative to a target node."""

    PRIOR_SIBLING = auto()  # Immediately before the target
    NEXT_SIBLING = auto()  # Immediately after the target
    AS_PARENT = auto()  # Takes the target's position, target becomes its child
    AS_CHILD = auto()  # Appended as the target's last child


class Direction(Enum):
    """Direction for sibling swaps."""

    UP = auto()
    DOWN = auto()


@dataclass(frozen=True)
class NodeHandle:
    """Checked reference to a node: slot index plus generation."""

    index: int
    generation: int


@dataclass(frozen=True)
class MoveToken:
    """Reference to a subtree held by an in-progress move."""

    move_id: int
    node: NodeHandle


@dataclass(frozen=True)
class NodeView:
    """Read-only description of a node for rendering."""

    handle: NodeHandle
    label: str
    depth: int
    index: int  # Pre-order position in the forest
    is_root: bool
    is_last: bool  # Last in its sibling list
    child_count: int


@dataclass
class _Slot:
    label: str
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    generation: int = 0
    alive: bool = True


@dataclass
class _PendingMove:
    """Bookkeeping for a subtree held by BeginMove."""

    node: int
    origin_parent: int | None
    origin_position: int
    previewed: bool = False
    # Node adopted as last child by an AS_PARENT preview
    adopted: int | None = None


# =============================================================================
# FOREST
# =============================================================================


class Forest:
    """An ordered forest of labeled nodes stored in an index arena."""

    def __init__(self) -> None:
        self._slots: list[_Slot] = []
        self._free: list[int] = []
        self._roots: list[int] = []
        self._moves: dict[int, _PendingMove] = {}
        self._move_ids = itertools.count(1)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_tree(cls, roots: Sequence[LabelTree]) -> Forest:
        """Build a forest from nested (label, children) tuples."""
        forest = cls()
        stack: list[tuple[int | None, Sequence[LabelTree]]] = [(None, roots)]
        while stack:
            parent, subtrees = stack.pop()
            for label, children in subtrees:
                idx = forest._new_slot(label)
                forest._attach(idx, parent, len(forest._container(parent)))
                if children:
                    stack.append((idx, children))
        return forest

    def to_tree(self) -> list[LabelTree]:
        """Return the forest as nested (label, children) tuples."""
        result: list[LabelTree] = []
        stack: list[tuple[list[int], list[LabelTree]]] = [(self._roots, result)]
        while stack:
            indices, out = stack.pop()
            for idx in indices:
                children: list[LabelTree] = []
                out.append((self._slots[idx].label, children))
                if self._slots[idx].children:
                    stack.append((self._slots[idx].children, children))
        return result

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Number of attached nodes."""
        return sum(1 for _ in self._walk(self._roots))

    @property
    def is_empty(self) -> bool:
        return not self._roots

    def roots(self) -> list[NodeHandle]:
        return [self._handle(i) for i in self._roots]

    def contains(self, handle: NodeHandle | None) -> bool:
        """True if the handle refers to a node attached to this forest."""
        if handle is None:
            return False
        try:
            self._resolve(handle)
        except StaleHandleError:
            return False
        return True

    def label(self, handle: NodeHandle) -> str:
        return self._slots[self._resolve(handle)].label

    def children(self, handle: NodeHandle) -> list[NodeHandle]:
        return [self._handle(i) for i in self._slots[self._resolve(handle)].children]

    def parent(self, handle: NodeHandle) -> NodeHandle | None:
        parent = self._slots[self._resolve(handle)].parent
        return None if parent is None else self._handle(parent)

    def iter_preorder(self) -> Iterator[NodeView]:
        """Yield every attached node in display (pre-order) order."""
        index = 0
        stack: list[tuple[int, int, bool]] = [
            (idx, 0, pos == len(self._roots) - 1)
            for pos, idx in reversed(list(enumerate(self._roots)))
        ]
        while stack:
            idx, depth, is_last = stack.pop()
            slot = self._slots[idx]
            yield NodeView(
                handle=self._handle(idx),
                label=slot.label,
                depth=depth,
                index=index,
                is_root=slot.parent is None,
                is_last=is_last,
                child_count=len(slot.children),
            )
            index += 1
            last = len(slot.children) - 1
            for pos in range(last, -1, -1):
                stack.append((slot.children[pos], depth + 1, pos == last))

    def handle_at(self, index: int) -> NodeHandle | None:
        """Return the handle at a pre-order index, or None if out of range."""
        if index < 0:
            return None
        for view in self.iter_preorder():
            if view.index == index:
                return view.handle
        return None

    def index_of(self, handle: NodeHandle) -> int:
        """Return the pre-order index of an attached node."""
        target = self._resolve(handle)
        for view in self.iter_preorder():
            if view.handle.index == target:
                return view.index
        raise StaleHandleError(handle)

    # -------------------------------------------------------------------------
    # Edit algebra
    # -------------------------------------------------------------------------

    def insert_root(self, label: str) -> NodeHandle:
        """Insert a new leaf at the start of the root list."""
        self._require_no_move()
        idx = self._new_slot(label)
        self._attach(idx, None, 0)
        logger.debug("node_inserted", placement="root", node=idx)
        return self._handle(idx)

    def insert(self, target: NodeHandle, placement: Placement, label: str) -> NodeHandle:
        """Insert a new node relative to target and return its handle."""
        target_idx = self._resolve(target)
        self._require_no_move()
        idx = self._new_slot(label)
        self._place(idx, target_idx, placement)
        logger.debug("node_inserted", placement=placement.name, node=idx, target=target_idx)
        return self._handle(idx)

    def delete(self, target: NodeHandle) -> NodeHandle | None:
        """Remove target and its subtree.

        Returns the handle to select next: the next sibling, else the
        previous sibling, else the parent, else None.
        """
        idx = self._resolve(target)
        self._require_no_move()
        slot = self._slots[idx]
        container = self._container(slot.parent)
        pos = container.index(idx)
        if pos + 1 < len(container):
            neighbour: int | None = container[pos + 1]
        elif pos > 0:
            neighbour = container[pos - 1]
        else:
            neighbour = slot.parent

        self._detach(idx)
        removed = 0
        for node in list(self._walk([idx])):
            self._free_slot(node)
            removed += 1
        logger.debug("subtree_deleted", node=idx, removed=removed)
        return None if neighbour is None else self._handle(neighbour)

    def edit_label(self, target: NodeHandle, label: str) -> NodeHandle:
        idx = self._resolve(target)
        self._require_no_move()
        self._slots[idx].label = label
        return target

    def promote(self, target: NodeHandle) -> NodeHandle:
        """Move target out of its parent to just before that parent."""
        idx = self._resolve(target)
        self._require_no_move()
        parent = self._slots[idx].parent
        if parent is None:
            raise NoParentError()
        self._detach(idx)
        grandparent = self._slots[parent].parent
        self._attach(idx, grandparent, self._container(grandparent).index(parent))
        return target

    def demote(self, target: NodeHandle) -> NodeHandle:
        """Make target the last child of its preceding sibling."""
        idx = self._resolve(target)
        self._require_no_move()
        container = self._container(self._slots[idx].parent)
        pos = container.index(idx)
        if pos == 0:
            raise NoPrecedingSiblingError("demote")
        new_parent = container[pos - 1]
        self._detach(idx)
        self._attach(idx, new_parent, len(self._slots[new_parent].children))
        return target

    def raise_node(self, target: NodeHandle) -> NodeHandle:
        """Append all of target's siblings to its children, in order."""
        idx = self._resolve(target)
        self._require_no_move()
        slot = self._slots[idx]
        container = self._container(slot.parent)
        if len(container) == 1:
            raise NoSiblingsError()
        siblings = [i for i in container if i != idx]
        for sibling in siblings:
            self._slots[sibling].parent = idx
        slot.children.extend(siblings)
        container[:] = [idx]
        return target

    def flatten(self, target: NodeHandle) -> NodeHandle:
        """Splice target's children into its sibling list right after it."""
        idx = self._resolve(target)
        self._require_no_move()
        slot = self._slots[idx]
        if not slot.children:
            raise NoChildrenError()
        container = self._container(slot.parent)
        pos = container.index(idx)
        children, slot.children = slot.children, []
        for child in children:
            self._slots[child].parent = slot.parent
        container[pos + 1:pos + 1] = children
        return target

    def swap(self, target: NodeHandle, direction: Direction) -> NodeHandle:
        """Exchange target with its previous or next sibling."""
        idx = self._resolve(target)
        self._require_no_move()
        container = self._container(self._slots[idx].parent)
        pos = container.index(idx)
        if direction is Direction.UP:
            if pos == 0:
                raise NoPrecedingSiblingError("move up")
            other = pos - 1
        else:
            if pos + 1 >= len(container):
                raise NoFollowingSiblingError("move down")
            other = pos + 1
        container[pos], container[other] = container[other], container[pos]
        return target

    # -------------------------------------------------------------------------
    # Multi-step move
    # -------------------------------------------------------------------------

    def begin_move(self, target: NodeHandle) -> MoveToken:
        """Detach target's subtree and hold it until commit or cancel."""
        idx = self._resolve(target)
        self._require_no_move()
        parent = self._slots[idx].parent
        position = self._detach(idx)
        move_id = next(self._move_ids)
        self._moves[move_id] = _PendingMove(
            node=idx, origin_parent=parent, origin_position=position
        )
        logger.debug("move_started", move_id=move_id, node=idx)
        return MoveToken(move_id=move_id, node=self._handle(idx))

    def relocate_move(
        self,
        token: MoveToken,
        destination: NodeHandle,
        placement: Placement,
    ) -> NodeHandle:
        """Preview the held subtree at a new position, without committing."""
        move = self._pending(token)
        # A node adopted by an AS_PARENT preview is back outside once undone
        adopted = move.adopted is not None and self._within(destination, move.adopted)
        if self._within(destination, move.node) and not adopted:
            raise InvalidDestinationError()
        dest_idx = self._resolve(destination)
        self._undo_preview(move)
        self._place(move.node, dest_idx, placement)
        move.previewed = True
        if placement is Placement.AS_PARENT:
            move.adopted = dest_idx
        logger.debug("move_previewed", move_id=token.move_id, placement=placement.name)
        return token.node

    def commit_move(self, token: MoveToken) -> NodeHandle:
        """Attach the held subtree at its last previewed position."""
        move = self._pending(token)
        if not move.previewed:
            self._attach(move.node, move.origin_parent, move.origin_position)
        del self._moves[token.move_id]
        logger.debug("move_committed", move_id=token.move_id)
        return token.node

    def cancel_move(self, token: MoveToken) -> NodeHandle:
        """Undo any preview and put the subtree back where it came from."""
        move = self._pending(token)
        self._undo_preview(move)
        self._attach(move.node, move.origin_parent, move.origin_position)
        del self._moves[token.move_id]
        logger.debug("move_cancelled", move_id=token.move_id)
        return token.node

    @property
    def has_pending_move(self) -> bool:
        return bool(self._moves)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _handle(self, idx: int) -> NodeHandle:
        return NodeHandle(idx, self._slots[idx].generation)

    def _new_slot(self, label: str) -> int:
        if self._free:
            idx = self._free.pop()
            slot = self._slots[idx]
            slot.label = label
            slot.parent = None
            slot.children = []
            slot.alive = True
            return idx
        self._slots.append(_Slot(label=label))
        return len(self._slots) - 1

    def _free_slot(self, idx: int) -> None:
        slot = self._slots[idx]
        slot.alive = False
        slot.generation += 1
        slot.parent = None
        slot.children = []
        slot.label = ""
        self._free.append(idx)

    def _live_slot(self, handle: NodeHandle) -> int:
        idx = handle.index
        if not 0 <= idx < len(self._slots):
            raise StaleHandleError(handle)
        slot = self._slots[idx]
        if not slot.alive or slot.generation != handle.generation:
            raise StaleHandleError(handle)
        return idx

    def _resolve(self, handle: NodeHandle) -> int:
        """Return the slot index for an attached node or raise."""
        idx = self._live_slot(handle)
        top = idx
        while self._slots[top].parent is not None:
            top = self._slots[top].parent
        if top not in self._roots:
            # Alive but held by a pending move
            raise StaleHandleError(handle)
        return idx

    def _within(self, handle: NodeHandle, ancestor: int) -> bool:
        """True if the handle's node is ancestor or one of its descendants."""
        try:
            idx: int | None = self._live_slot(handle)
        except StaleHandleError:
            return False
        while idx is not None:
            if idx == ancestor:
                return True
            idx = self._slots[idx].parent
        return False

    def _container(self, parent: int | None) -> list[int]:
        return self._roots if parent is None else self._slots[parent].children

    def _detach(self, idx: int) -> int:
        """Unlink idx from its sibling list and return its old position."""
        slot = self._slots[idx]
        container = self._container(slot.parent)
        pos = container.index(idx)
        del container[pos]
        slot.parent = None
        return pos

    def _attach(self, idx: int, parent: int | None, position: int) -> None:
        self._container(parent).insert(position, idx)
        self._slots[idx].parent = parent

    def _place(self, idx: int, target: int, placement: Placement) -> None:
        """Attach the unattached node idx relative to an attached target."""
        target_slot = self._slots[target]
        if placement is Placement.AS_CHILD:
            self._attach(idx, target, len(target_slot.children))
            return

        parent = target_slot.parent
        pos = self._container(parent).index(target)
        if placement is Placement.PRIOR_SIBLING:
            self._attach(idx, parent, pos)
        elif placement is Placement.NEXT_SIBLING:
            self._attach(idx, parent, pos + 1)
        else:
            self._detach(target)
            self._attach(idx, parent, pos)
            self._attach(target, idx, len(self._slots[idx].children))

    def _undo_preview(self, move: _PendingMove) -> None:
        """Detach a previewed subtree, restoring any node it adopted."""
        if not move.previewed:
            return
        if move.adopted is not None:
            adopted = move.adopted
            self._detach(adopted)
            parent = self._slots[move.node].parent
            self._attach(adopted, parent, self._container(parent).index(move.node))
        self._detach(move.node)
        move.previewed = False
        move.adopted = None

    def _require_no_move(self) -> None:
        # Pending moves remember their origin by slot index
        if self._moves:
            raise MoveInProgressError()

    def _pending(self, token: MoveToken) -> _PendingMove:
        move = self._moves.get(token.move_id)
        if move is None or self._live_slot(token.node) != move.node:
            raise StaleHandleError(token)
        return move

    def _walk(self, start: list[int]) -> Iterator[int]:
        stack = list(reversed(start))
        while stack:
            idx = stack.pop()
            yield idx
            stack.extend(reversed(self._slots[idx].children))

    def __repr__(self) -> str:
        return f"Forest(roots={len(self._roots)}, size={self.size})"
