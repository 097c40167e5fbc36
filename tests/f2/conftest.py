"""Fixtures for F2 tests - Codec, names and document storage."""

from pathlib import Path

import pytest

from arbor.core.document_store import DocumentStore
from arbor.core.forest import Forest


@pytest.fixture
def documents_dir(tmp_path) -> Path:
    """Documents directory inside a temp data dir (created lazily by the store)."""
    return tmp_path / "data" / "documents"


@pytest.fixture
def store(documents_dir):
    """Store for this test process; releases its locks on teardown."""
    with DocumentStore(documents_dir) as s:
        yield s


@pytest.fixture
def other_store(documents_dir):
    """A second store with its own lock table, standing in for another session."""
    with DocumentStore(documents_dir) as s:
        yield s


@pytest.fixture
def sample_forest() -> Forest:
    return Forest.from_tree([("Plan", [("Goals", []), ("Risks", [])]), ("Notes", [])])


@pytest.fixture
def saved_outline(store, sample_forest) -> str:
    """Persist a document named 'outline' and release its lock."""
    document = store.save_new("outline", sample_forest)
    store.unload(document)
    return document.name
