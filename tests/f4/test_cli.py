"""Tests for arbor CLI commands and the interactive editor (F4)."""

import pytest
from typer.testing import CliRunner

from arbor.cli.commands import app
from arbor.core.codec import decode_tree
from arbor.core.document_store import DocumentStore
from arbor.core.forest import Forest


runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    """Data directory passed to the CLI through ARBOR_DATA_DIR."""
    return tmp_path / "arbor-data"


@pytest.fixture
def env(data_dir):
    return {"ARBOR_DATA_DIR": str(data_dir), "ARBOR_LOG_LEVEL": "WARNING"}


@pytest.fixture
def documents_dir(data_dir):
    return data_dir / "documents"


@pytest.fixture
def outline_doc(documents_dir):
    """'outline' = A[B, C], saved and released."""
    with DocumentStore(documents_dir) as store:
        store.save_new("outline", Forest.from_tree([("A", [("B", []), ("C", [])])]))
    return documents_dir / "outline.arbor"


def read_tree(path):
    return decode_tree(path.read_bytes())


class TestListCommand:
    def test_list_empty(self, env):
        result = runner.invoke(app, ["list"], env=env)

        assert result.exit_code == 0
        assert "No documents yet" in result.output

    def test_list_documents(self, env, outline_doc, documents_dir):
        with DocumentStore(documents_dir) as store:
            store.save_new("plan", Forest())

        result = runner.invoke(app, ["list"], env=env)

        assert result.exit_code == 0
        assert "Documents (2)" in result.output
        assert "outline" in result.output
        assert "plan" in result.output


class TestShowCommand:
    def test_show_renders_outline(self, env, outline_doc):
        result = runner.invoke(app, ["show", "outline"], env=env)

        assert result.exit_code == 0
        for label in ("A", "B", "C"):
            assert label in result.output

    def test_show_by_prefix_with_indices(self, env, outline_doc):
        result = runner.invoke(app, ["show", "out", "--indices"], env=env)

        assert result.exit_code == 0
        assert "2 C" in result.output

    def test_show_releases_lock(self, env, outline_doc, documents_dir):
        runner.invoke(app, ["show", "outline"], env=env)

        assert not (documents_dir / ".outline.arbor.lock").exists()

    def test_show_unknown(self, env, outline_doc):
        result = runner.invoke(app, ["show", "ghost"], env=env)

        assert result.exit_code == 1
        assert "No document matches" in result.output
        assert "Available documents" in result.output

    def test_show_locked_document(self, env, outline_doc, documents_dir):
        with DocumentStore(documents_dir) as other:
            other.load("outline")

            result = runner.invoke(app, ["show", "outline"], env=env)

        assert result.exit_code == 1
        assert "open in another session" in result.output


class TestRenameCommand:
    def test_rename(self, env, outline_doc, documents_dir):
        result = runner.invoke(app, ["rename", "outline", "roadmap"], env=env)

        assert result.exit_code == 0
        assert (documents_dir / "roadmap.arbor").exists()
        assert not outline_doc.exists()

    def test_rename_collision(self, env, outline_doc, documents_dir):
        with DocumentStore(documents_dir) as store:
            store.save_new("roadmap", Forest())

        result = runner.invoke(app, ["rename", "outline", "Roadmap"], env=env)

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert outline_doc.exists()

    def test_rename_invalid_name(self, env, outline_doc):
        result = runner.invoke(app, ["rename", "outline", "a:b"], env=env)

        assert result.exit_code == 1
        assert "illegal characters" in result.output


class TestDeleteCommand:
    def test_delete_with_yes(self, env, outline_doc):
        result = runner.invoke(app, ["delete", "outline", "--yes"], env=env)

        assert result.exit_code == 0
        assert not outline_doc.exists()

    def test_delete_confirmed_interactively(self, env, outline_doc):
        result = runner.invoke(app, ["delete", "outline"], input="y\n", env=env)

        assert result.exit_code == 0
        assert not outline_doc.exists()

    def test_delete_declined(self, env, outline_doc):
        result = runner.invoke(app, ["delete", "outline"], input="n\n", env=env)

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert outline_doc.exists()

    def test_delete_open_document_fails(self, env, outline_doc, documents_dir):
        with DocumentStore(documents_dir) as other:
            other.load("outline")

            result = runner.invoke(app, ["delete", "outline", "--yes"], env=env)

        assert result.exit_code == 1
        assert outline_doc.exists()


class TestEditCommand:
    def test_new_document_insert_and_save(self, env, documents_dir):
        script = "insert Groceries\nchild Milk\nsave\ngroceries\nquit\n"

        result = runner.invoke(app, ["edit", "--new"], input=script, env=env)

        assert result.exit_code == 0, result.output
        assert "Saved as 'groceries'" in result.output
        assert read_tree(documents_dir / "groceries.arbor") == [("Groceries", [("Milk", [])])]
        assert not (documents_dir / ".groceries.arbor.lock").exists()

    def test_edit_existing_promote_and_save(self, env, outline_doc):
        script = "1\npromote\nsave\nquit\n"

        result = runner.invoke(app, ["edit", "outline"], input=script, env=env)

        assert result.exit_code == 0, result.output
        assert read_tree(outline_doc) == [("B", []), ("A", [("C", [])])]

    def test_move_through_editor(self, env, outline_doc):
        script = "1\nmove\nto 1 child\ndone\nsave\nquit\n"

        result = runner.invoke(app, ["edit", "outline"], input=script, env=env)

        assert result.exit_code == 0, result.output
        assert read_tree(outline_doc) == [("A", [("C", [("B", [])])])]

    def test_file_select_open_delete_and_save_on_quit(self, env, outline_doc):
        script = "open 1\n0\ndelete\ny\nquit\ns\n"

        result = runner.invoke(app, ["edit"], input=script, env=env)

        assert result.exit_code == 0, result.output
        assert "Delete 'A' and its subtree?" in result.output
        assert read_tree(outline_doc) == []

    def test_quit_discard_keeps_file(self, env, outline_doc):
        before = outline_doc.read_bytes()
        script = "0\nedit Alpha\nquit\nd\n"

        result = runner.invoke(app, ["edit", "outline"], input=script, env=env)

        assert result.exit_code == 0, result.output
        assert "Changes discarded" in result.output
        assert outline_doc.read_bytes() == before

    def test_end_of_input_with_unsaved_changes_warns(self, env, documents_dir):
        result = runner.invoke(app, ["edit", "--new"], input="insert draft\n", env=env)

        assert result.exit_code == 0
        assert "unsaved changes were discarded" in result.output
        assert not documents_dir.exists() or not list(documents_dir.iterdir())

    def test_structural_error_is_reported(self, env, outline_doc):
        result = runner.invoke(app, ["edit", "outline"], input="0\npromote\nquit\n", env=env)

        assert result.exit_code == 0
        assert "already a root" in result.output

    def test_unknown_command(self, env, outline_doc):
        result = runner.invoke(app, ["edit", "outline"], input="frobnicate\nquit\n", env=env)

        assert "Unknown command 'frobnicate'" in result.output

    def test_help_lists_commands(self, env):
        result = runner.invoke(app, ["edit", "--new"], input="help\nquit\n", env=env)

        assert "flatten" in result.output
        assert "promote" in result.output

    def test_edit_locked_document_exits_with_error(self, env, outline_doc, documents_dir):
        with DocumentStore(documents_dir) as other:
            other.load("outline")

            result = runner.invoke(app, ["edit", "outline"], input="quit\n", env=env)

        assert result.exit_code == 1
        assert "open in another session" in result.output

    def test_rename_from_file_select(self, env, outline_doc, documents_dir):
        result = runner.invoke(app, ["edit"], input="rename outline\nroadmap\nquit\n", env=env)

        assert result.exit_code == 0, result.output
        assert (documents_dir / "roadmap.arbor").exists()
