"""Binary document codec.

Format (all integers are unsigned 32-bit big-endian):

    root_count
    node*            # pre-order, roots first to last

    node := label_length  label_utf8[label_length]  child_count  node*child_count

Decoding is all-or-nothing: truncated input, trailing bytes, invalid UTF-8
or counts that cannot fit in the remaining bytes raise CodecError and no
forest is returned.
"""

from __future__ import annotations

import struct

import structlog

from arbor.core.forest import Forest, LabelTree

logger = structlog.get_logger(__name__)

_U32 = struct.Struct(">I")
# Smallest possible encoded node: empty label + zero children
MIN_NODE_SIZE = 2 * _U32.size
MAX_U32 = 0xFFFFFFFF


class CodecError(ValueError):
    """Raised when bytes are not a valid encoded forest."""

    pass


def encode_forest(forest: Forest) -> bytes:
    """Serialize a forest to bytes."""
    return encode_tree(forest.to_tree())


def encode_tree(roots: list[LabelTree]) -> bytes:
    """Serialize nested (label, children) tuples to bytes."""
    out = bytearray(_U32.pack(len(roots)))
    stack: list[LabelTree] = list(reversed(roots))
    while stack:
        label, children = stack.pop()
        raw = label.encode("utf-8")
        if len(raw) > MAX_U32 or len(children) > MAX_U32:
            raise CodecError("Node too large to encode")
        out += _U32.pack(len(raw))
        out += raw
        out += _U32.pack(len(children))
        stack.extend(reversed(children))
    return bytes(out)


def decode_tree(data: bytes) -> list[LabelTree]:
    """Parse bytes into nested (label, children) tuples."""
    view = memoryview(data)
    offset = 0

    def read_u32() -> int:
        nonlocal offset
        if offset + _U32.size > len(view):
            raise CodecError(f"Truncated data at byte {offset}")
        (value,) = _U32.unpack_from(view, offset)
        offset += _U32.size
        return value

    def check_count(count: int) -> None:
        # Every pending node needs at least MIN_NODE_SIZE more bytes
        if count * MIN_NODE_SIZE > len(view) - offset:
            raise CodecError(f"Node count {count} exceeds remaining data at byte {offset}")

    roots: list[LabelTree] = []
    root_count = read_u32()
    check_count(root_count)

    # Each frame: (list to fill, nodes still expected in it)
    stack: list[list] = [[roots, root_count]]
    while stack:
        frame = stack[-1]
        if frame[1] == 0:
            stack.pop()
            continue
        frame[1] -= 1

        length = read_u32()
        if offset + length > len(view):
            raise CodecError(f"Truncated label at byte {offset}")
        try:
            label = bytes(view[offset:offset + length]).decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError(f"Invalid UTF-8 label at byte {offset}") from e
        offset += length

        child_count = read_u32()
        check_count(child_count)
        children: list[LabelTree] = []
        frame[0].append((label, children))
        if child_count:
            stack.append([children, child_count])

    if offset != len(view):
        raise CodecError(f"{len(view) - offset} trailing bytes after forest")
    return roots


def decode_forest(data: bytes) -> Forest:
    """Parse bytes into a new Forest."""
    forest = Forest.from_tree(decode_tree(data))
    logger.debug("forest_decoded", bytes=len(data), nodes=forest.size)
    return forest
