"""Fixtures for F3 tests - Session controller."""

import pytest

from arbor.core.document_store import DocumentStore
from arbor.core.forest import Forest
from arbor.core.session import SessionController


@pytest.fixture
def documents_dir(tmp_path):
    return tmp_path / "documents"


@pytest.fixture
def store(documents_dir):
    with DocumentStore(documents_dir) as s:
        yield s


@pytest.fixture
def controller(store):
    session = SessionController(store)
    yield session
    session.close()


@pytest.fixture
def outline_on_disk(documents_dir):
    """Persist 'outline' = A[B, C] using a separate, already closed store."""
    with DocumentStore(documents_dir) as seed:
        seed.save_new("outline", Forest.from_tree([("A", [("B", []), ("C", [])])]))
    return "outline"


@pytest.fixture
def editing(controller, outline_on_disk):
    """Controller with 'outline' open and nothing selected."""
    result = controller.open_document("outline")
    assert result.success, result.message
    return controller


@pytest.fixture
def other_store(documents_dir):
    """A second store with its own lock table, standing in for another session."""
    with DocumentStore(documents_dir) as s:
        yield s
