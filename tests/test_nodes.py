"""
test_nodes.py

Tests for EmbeddableNode and the node selector.
"""

from __future__ import annotations

import pytest

from code_vec.config import EMBEDDABLE_LABELS
from code_vec.nodes import EmbeddableNode, row_to_node, select_embeddable_nodes, selection_query

from fakes import FakeExecutor, node

_GRAPH = [
    node("fn:a", "load_config", "Function", "src/config.py", "def load_config(): ...", 1, 3),
    node("cls:b", "Parser", "Class", "src/parse.py", "class Parser: ...", 5, 40),
    node("var:c", "DEBUG", "Variable", "src/config.py"),
    node("file:d", "config.py", "File", "src/config.py", None),
]


def test_selection_query_lists_allowed_labels():
    q = selection_query(("Function", "Class"))
    assert "MATCH (n:CodeNode)" in q
    assert "n.label IN ['Function', 'Class']" in q
    assert "n.id AS id" in q
    assert "n.endLine AS endLine" in q


def test_selection_query_escapes_quotes():
    q = selection_query(("O'Brien",))
    assert "'O\\'Brien'" in q


def test_select_filters_by_allow_list():
    ex = FakeExecutor(_GRAPH)
    nodes = select_embeddable_nodes(ex)
    assert [n.id for n in nodes] == ["fn:a", "cls:b", "file:d"]
    assert all(isinstance(n, EmbeddableNode) for n in nodes)


def test_select_custom_labels():
    ex = FakeExecutor(_GRAPH)
    nodes = select_embeddable_nodes(ex, labels=("Class",))
    assert [n.id for n in nodes] == ["cls:b"]


def test_select_empty_graph_returns_empty_list():
    assert select_embeddable_nodes(FakeExecutor()) == []


def test_select_positional_rows():
    named = select_embeddable_nodes(FakeExecutor(_GRAPH))
    positional = select_embeddable_nodes(FakeExecutor(_GRAPH, positional=True))
    assert named == positional


def test_select_missing_content_becomes_empty_string():
    nodes = select_embeddable_nodes(FakeExecutor(_GRAPH))
    file_node = next(n for n in nodes if n.label == "File")
    assert file_node.content == ""
    assert file_node.start_line is None


def test_row_to_node_coerces_lines():
    n = row_to_node(["x", "f", "Function", "a.py", "", "10", 12])
    assert n.start_line == 10
    assert n.end_line == 12


def test_default_labels_are_closed_set():
    assert set(EMBEDDABLE_LABELS) == {"Function", "Class", "Method", "Interface", "File"}


def test_embeddable_node_is_frozen():
    n = EmbeddableNode(id="x", name="f", label="Function")
    with pytest.raises(Exception):
        n.name = "g"  # type: ignore[misc]
