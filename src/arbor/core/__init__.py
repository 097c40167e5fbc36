"""Core outline editing logic.

Modules:
- forest: Forest model and structural edit algebra
- codec: Binary document encoding/decoding
- document_store: Named document files, locks and atomic saves
- session: Session controller state machine
"""

__all__ = [
    "forest",
    "codec",
    "document_store",
    "session",
]
