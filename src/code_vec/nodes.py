#!/usr/bin/env python3
"""
nodes.py

EmbeddableNode and the node selector.

The selector reads every ``CodeNode`` whose label is in the embeddable
allow-list.  It is re-run on every pipeline invocation; there is no
incremental diffing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from code_vec.config import EMBEDDABLE_LABELS, NODE_TABLE
from code_vec.store import GraphExecutor, read_field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddableNode:
    """
    Read-only projection of a graph node eligible for embedding.

    :param id: Primary key of the node in ``CodeNode``.
    :param name: Symbol or file name.
    :param label: Node label (``Function``, ``Class``, ...).
    :param file_path: Repo-relative path of the defining file.
    :param content: Source text; empty string when the graph has none.
    :param start_line: First line of the definition, if known.
    :param end_line: Last line of the definition, if known.
    """

    id: str
    name: str
    label: str
    file_path: str = ""
    content: str = ""
    start_line: Optional[int] = None
    end_line: Optional[int] = None


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def selection_query(labels: Sequence[str] = EMBEDDABLE_LABELS) -> str:
    """Cypher selecting embeddable nodes with a stable column order."""
    label_list = ", ".join(_quote(label) for label in labels)
    return f"""
    MATCH (n:{NODE_TABLE})
    WHERE n.label IN [{label_list}]
    RETURN n.id AS id, n.name AS name, n.label AS label,
           n.filePath AS filePath, n.content AS content,
           n.startLine AS startLine, n.endLine AS endLine
    """


def row_to_node(row) -> EmbeddableNode:
    """Build an :class:`EmbeddableNode` from a named or positional row."""
    start = read_field(row, "startLine", 5)
    end = read_field(row, "endLine", 6)
    return EmbeddableNode(
        id=str(read_field(row, "id", 0)),
        name=read_field(row, "name", 1, ""),
        label=read_field(row, "label", 2, ""),
        file_path=read_field(row, "filePath", 3, ""),
        content=read_field(row, "content", 4, ""),
        start_line=int(start) if start is not None else None,
        end_line=int(end) if end is not None else None,
    )


def select_embeddable_nodes(
    executor: GraphExecutor,
    labels: Sequence[str] = EMBEDDABLE_LABELS,
) -> List[EmbeddableNode]:
    """
    Fetch all nodes whose label is in *labels*.

    :param executor: Graph store boundary.
    :param labels: Label allow-list.
    :return: Nodes in store order; empty list when none qualify.
    """
    rows = executor.execute_query(selection_query(labels))
    nodes = [row_to_node(r) for r in rows]
    logger.debug("Selected %d embeddable nodes (labels=%s)", len(nodes), ",".join(labels))
    return nodes
