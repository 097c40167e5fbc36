"""Document store module.

Responsibilities:
- Map document names to binary forest files in the documents directory
- Enforce name validity and uniqueness (case-insensitive)
- Guarantee exclusive access through companion lock files
- Save atomically (temporary file + os.replace) and keep files read-only at rest

On-disk layout (documents directory):
- {name}.arbor                 binary forest (see arbor.core.codec)
- .{name}.arbor.lock           lock artifact, JSON {pid, hostname, acquired_at}
- .{name}.arbor.XXXX.tmp       temporary file, only while a save is running

Locks held by this process are tracked in an explicit LockTable. A
DocumentStore used as a context manager releases every lock it still holds
on exit, whatever the exit path.
"""

from __future__ import annotations

import json
import os
import socket
import stat
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from arbor.config.app_config import StorageConfig
from arbor.core.codec import CodecError, decode_forest, encode_forest
from arbor.core.forest import Forest
from arbor.utils.validators import (
    NameCollisionError,
    names_collide,
    validate_document_name,
)

logger = structlog.get_logger(__name__)

READ_ONLY_MODE = stat.S_IRUSR
WRITABLE_MODE = stat.S_IRUSR | stat.S_IWUSR
# A lock file younger than this may still be mid-write by its creator
LOCK_WRITE_GRACE_SECONDS = 5.0


# =============================================================================
# ERRORS
# =============================================================================


class StorageError(Exception):
    """Base exception for document storage errors."""

    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(message)


class DocumentLockedError(StorageError):
    """Raised when another session holds the document lock."""

    def __init__(self, name: str, owner_pid: int | None = None):
        self.owner_pid = owner_pid
        owner = f" (pid {owner_pid})" if owner_pid else ""
        super().__init__(name, f"Document '{name}' is open in another session{owner}.")


class DocumentNotFoundError(StorageError):
    """Raised when the document file does not exist."""

    def __init__(self, name: str):
        super().__init__(name, f"Document '{name}' not found.")


class DocumentDecodeError(StorageError):
    """Raised when the document file is not a valid encoded forest."""

    def __init__(self, name: str, detail: str):
        self.detail = detail
        super().__init__(name, f"Document '{name}' is corrupted: {detail}")


class DocumentWriteError(StorageError):
    """Raised when writing a document fails; the previous file is intact."""

    def __init__(self, name: str, detail: str):
        self.detail = detail
        super().__init__(name, f"Could not save '{name}': {detail}")


# =============================================================================
# LOCKS
# =============================================================================


def _owner_alive(owner: dict[str, Any]) -> bool:
    """Best-effort check that the process recorded in a lock still runs."""
    if owner.get("hostname") != socket.gethostname():
        return True
    pid = owner.get("pid")
    if not isinstance(pid, int) or pid <= 0:
        return False
    if os.name == "nt":
        # os.kill(pid, 0) terminates processes on Windows
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class DocumentLock:
    """Exclusive lock on one document, backed by a companion lock file."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        """Create the lock file or raise DocumentLockedError.

        Lock files left by processes that no longer run are reclaimed.
        """
        if self._held:
            raise DocumentLockedError(self.name, os.getpid())

        for _ in range(2):
            if self._try_create():
                self._held = True
                logger.debug("lock_acquired", document=self.name, path=str(self.path))
                return

            owner = self._read_owner()
            if owner == {}:
                # Released between our create attempt and the read
                continue
            if owner is None:
                if self._recently_written():
                    raise DocumentLockedError(self.name)
            elif _owner_alive(owner):
                raise DocumentLockedError(self.name, owner.get("pid"))

            logger.info("stale_lock_removed", document=self.name, owner=owner)
            self.path.unlink(missing_ok=True)

        raise DocumentLockedError(self.name)

    def release(self) -> None:
        """Remove the lock file. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("lock_release_failed", document=self.name, error=str(e))
            return
        logger.debug("lock_released", document=self.name)

    def move_to(self, name: str, path: Path) -> None:
        """Relocate a held lock after its document was renamed."""
        os.replace(self.path, path)
        self.name = name
        self.path = path

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        except FileExistsError:
            return False
        info = {
            "pid": os.getpid(),
            "hostname": socket.gethostname(),
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(info, f)
        return True

    def _read_owner(self) -> dict[str, Any] | None:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            return None
        return data if isinstance(data, dict) and data else None

    def _recently_written(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except OSError:
            return False
        return age < LOCK_WRITE_GRACE_SECONDS

    def __enter__(self) -> DocumentLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class LockTable:
    """Document locks held by this process instance."""

    def __init__(self) -> None:
        self._locks: dict[Path, DocumentLock] = {}

    def acquire(self, name: str, path: Path) -> DocumentLock:
        """Acquire a lock, refusing locks this instance already holds."""
        if path in self._locks:
            raise DocumentLockedError(name, os.getpid())
        lock = DocumentLock(name, path)
        lock.acquire()
        self._locks[path] = lock
        return lock

    def release(self, lock: DocumentLock) -> None:
        self._locks.pop(lock.path, None)
        lock.release()

    def relocate(self, lock: DocumentLock, name: str, path: Path) -> None:
        old = lock.path
        lock.move_to(name, path)
        self._locks.pop(old, None)
        self._locks[path] = lock

    def holds(self, path: Path) -> bool:
        return path in self._locks

    def release_all(self) -> None:
        for lock in list(self._locks.values()):
            self.release(lock)

    def __len__(self) -> int:
        return len(self._locks)


# =============================================================================
# DOCUMENT RECORD
# =============================================================================


@dataclass
class Document:
    """An open document: its forest, dirty flag and lock."""

    name: str
    forest: Forest
    dirty: bool = False
    lock: DocumentLock | None = field(default=None, repr=False)

    @property
    def locked(self) -> bool:
        return self.lock is not None and self.lock.held

    def mark_dirty(self) -> None:
        self.dirty = True


# =============================================================================
# STORE
# =============================================================================


class DocumentStore:
    """Persist forests as one binary file per document name."""

    def __init__(
        self,
        root: Path,
        locks: LockTable | None = None,
        storage: StorageConfig | None = None,
    ):
        self.root = Path(root)
        self.locks = locks if locks is not None else LockTable()
        self.storage = storage or StorageConfig()

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def path_for(self, name: str) -> Path:
        return self.root / f"{name}{self.storage.extension}"

    def lock_path_for(self, name: str) -> Path:
        return self.root / f".{name}{self.storage.extension}{self.storage.lock_suffix}"

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_documents(self) -> list[str]:
        """Return existing document names in stable display order."""
        if not self.root.is_dir():
            return []
        ext = self.storage.extension
        names = [
            p.name[: -len(ext)]
            for p in self.root.iterdir()
            if p.is_file() and p.name.endswith(ext) and not p.name.startswith(".")
        ]
        return sorted(names, key=lambda n: (n.casefold(), n))

    def find(self, name: str) -> str | None:
        """Return the stored name that collides with `name`, if any."""
        for existing in self.list_documents():
            if names_collide(existing, name):
                return existing
        return None

    def exists(self, name: str) -> bool:
        return self.find(name) is not None

    def is_locked(self, name: str) -> bool:
        """True if any live session holds the document's lock."""
        lock_path = self.lock_path_for(name)
        if self.locks.holds(lock_path):
            return True
        if not lock_path.exists():
            return False
        owner = DocumentLock(name, lock_path)._read_owner()
        return owner is None or (bool(owner) and _owner_alive(owner))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def load(self, name: str) -> Document:
        """Lock and decode a document.

        Raises:
            DocumentNotFoundError: No such document
            DocumentLockedError: Another session holds it
            DocumentDecodeError: File content is not a valid forest
        """
        path = self.path_for(name)
        if not path.is_file():
            raise DocumentNotFoundError(name)

        lock = self.locks.acquire(name, self.lock_path_for(name))
        try:
            data = path.read_bytes()
            forest = decode_forest(data)
        except CodecError as e:
            self.locks.release(lock)
            logger.error("document_decode_failed", name=name, error=str(e))
            raise DocumentDecodeError(name, str(e)) from e
        except OSError as e:
            self.locks.release(lock)
            logger.error("document_read_failed", name=name, error=str(e))
            raise StorageError(name, f"Could not read '{name}': {e}") from e

        logger.info("document_loaded", name=name, bytes=len(data), nodes=forest.size)
        return Document(name=name, forest=forest, dirty=False, lock=lock)

    def save(self, document: Document) -> bool:
        """Write a dirty document atomically.

        Returns:
            True if bytes were written, False if the document was clean.

        Raises:
            DocumentLockedError: The document's lock is not held
            DocumentWriteError: Writing failed; previous file and dirty flag kept
        """
        if not document.dirty:
            logger.debug("document_save_skipped", name=document.name)
            return False
        if not document.locked:
            raise DocumentLockedError(document.name)

        data = encode_forest(document.forest)
        self._write_atomic(document.name, data)
        document.dirty = False
        logger.info("document_saved", name=document.name, bytes=len(data))
        return True

    def save_new(self, name: str, forest: Forest) -> Document:
        """Create a document under a new name and write it.

        Raises:
            InvalidNameError: Name is not usable
            NameCollisionError: Name already taken
            DocumentLockedError: Another session is creating the same name
            DocumentWriteError: Writing failed
        """
        validate_document_name(name)
        existing = self.find(name)
        if existing is not None:
            raise NameCollisionError(name, existing)

        self._ensure_root()
        lock = self.locks.acquire(name, self.lock_path_for(name))
        try:
            existing = self.find(name)
            if existing is not None:
                raise NameCollisionError(name, existing)
            document = Document(name=name, forest=forest, dirty=True, lock=lock)
            self.save(document)
        except Exception:
            self.locks.release(lock)
            raise

        logger.info("document_created", name=name)
        return document

    def rename(self, old_name: str, new_name: str, document: Document | None = None) -> None:
        """Rename a document file.

        Pass the open Document when renaming the one this session holds;
        its name and lock move along with the file.

        Raises:
            InvalidNameError / NameCollisionError: new_name rejected
            DocumentNotFoundError: old_name does not exist
            DocumentLockedError: Another session holds old_name, or is
                creating a document called new_name
        """
        validate_document_name(new_name)
        case_only = names_collide(old_name, new_name) and old_name != new_name
        existing = self.find(new_name)
        if existing is not None and not case_only:
            raise NameCollisionError(new_name, existing)

        old_path = self.path_for(old_name)
        if not old_path.is_file():
            raise DocumentNotFoundError(old_name)

        own_lock = document.lock if document is not None and document.locked else None
        lock = own_lock or self.locks.acquire(old_name, self.lock_path_for(old_name))
        target_lock = None
        try:
            if not case_only:
                # A session creating new_name holds its lock until the file exists
                target_lock = self.locks.acquire(new_name, self.lock_path_for(new_name))
                existing = self.find(new_name)
                if existing is not None:
                    raise NameCollisionError(new_name, existing)
            os.replace(old_path, self.path_for(new_name))
        except OSError as e:
            raise StorageError(old_name, f"Could not rename '{old_name}': {e}") from e
        finally:
            if target_lock is not None:
                self.locks.release(target_lock)
            if own_lock is None:
                self.locks.release(lock)

        if own_lock is not None:
            self.locks.relocate(own_lock, new_name, self.lock_path_for(new_name))
            document.name = new_name

        logger.info("document_renamed", old=old_name, new=new_name)

    def delete(self, name: str) -> None:
        """Delete a document file.

        Raises:
            DocumentNotFoundError: No such document
            DocumentLockedError: The document is open in a session
        """
        path = self.path_for(name)
        if not path.is_file():
            raise DocumentNotFoundError(name)

        lock = self.locks.acquire(name, self.lock_path_for(name))
        try:
            if os.name == "nt":
                os.chmod(path, WRITABLE_MODE)
            path.unlink()
        except OSError as e:
            raise StorageError(name, f"Could not delete '{name}': {e}") from e
        finally:
            self.locks.release(lock)

        logger.info("document_deleted", name=name)

    def unload(self, document: Document) -> None:
        """Release the document's lock. Safe to call more than once."""
        if document.lock is not None:
            self.locks.release(document.lock)
            logger.info("document_unloaded", name=document.name)

    def close(self) -> None:
        """Release every lock this store still holds."""
        if len(self.locks):
            logger.debug("releasing_locks", count=len(self.locks))
        self.locks.release_all()

    def __enter__(self) -> DocumentStore:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _write_atomic(self, name: str, data: bytes) -> None:
        """Replace the document file without ever exposing a partial write."""
        path = self.path_for(name)
        try:
            self._ensure_root()
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=self.root
            )
        except OSError as e:
            raise DocumentWriteError(name, str(e)) from e

        tmp_path = Path(tmp_name)
        # Windows refuses to replace a read-only file
        unprotected = os.name == "nt" and path.exists()
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if unprotected:
                os.chmod(path, WRITABLE_MODE)
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            if unprotected and self.storage.read_only_at_rest:
                self._protect(path)
            logger.error("document_write_failed", name=name, error=str(e))
            raise DocumentWriteError(name, str(e)) from e

        if self.storage.read_only_at_rest:
            self._protect(path)
        self._fsync_root()

    def _protect(self, path: Path) -> None:
        try:
            os.chmod(path, READ_ONLY_MODE)
        except OSError as e:
            logger.warning("read_only_marking_failed", path=str(path), error=str(e))

    def _fsync_root(self) -> None:
        if os.name == "nt":
            return
        try:
            fd = os.open(self.root, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass
        finally:
            os.close(fd)
