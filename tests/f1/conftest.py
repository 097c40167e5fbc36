"""Fixtures for F1 tests - Forest model."""

import pytest

from arbor.core.forest import Forest, NodeHandle


def _find(forest: Forest, label: str) -> NodeHandle:
    for view in forest.iter_preorder():
        if view.label == label:
            return view.handle
    raise AssertionError(f"No node labelled {label!r}")


def _assert_well_formed(forest: Forest) -> None:
    seen = set()
    stack = [(h, None) for h in forest.roots()]
    while stack:
        handle, parent = stack.pop()
        assert handle not in seen, f"{forest.label(handle)!r} reachable twice"
        seen.add(handle)
        assert forest.parent(handle) == parent
        stack.extend((child, handle) for child in forest.children(handle))
    assert len(seen) == forest.size


@pytest.fixture
def find():
    """Look up the first node with a given label."""
    return _find


@pytest.fixture
def well_formed():
    """Assert single ownership: every node reachable once, parent links consistent."""
    return _assert_well_formed


@pytest.fixture
def abc_forest() -> Forest:
    """A[B, C]"""
    return Forest.from_tree([("A", [("B", []), ("C", [])])])


@pytest.fixture
def outline_forest() -> Forest:
    """Two roots: Plan[Goals[Short, Long], Risks], Notes"""
    return Forest.from_tree(
        [
            (
                "Plan",
                [
                    ("Goals", [("Short", []), ("Long", [])]),
                    ("Risks", []),
                ],
            ),
            ("Notes", []),
        ]
    )
