#!/usr/bin/env python3
"""
text.py

Canonical embedding text for graph nodes.

Stable: changing the layout invalidates every stored embedding.
Synthesis is a pure function of ``(node, config)``.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import List, Sequence

from code_vec.config import DEFAULT_CONFIG, EmbeddingConfig
from code_vec.nodes import EmbeddableNode

# File nodes carry whole-file content; keep their preview short
_FILE_PREVIEW_CHARS = 300
# Truncate at a newline only if one falls in the last 20% of the slice
_LINE_BREAK_WINDOW = 0.8
_ELLIPSIS = "..."

_BLANK_RUNS = re.compile(r"\n{3,}")


def clean_content(content: str) -> str:
    """Normalise line endings and whitespace in a source snippet."""
    if not content:
        return ""
    text = content.replace("\r\n", "\n").replace("\r", "\n")
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def truncate_content(content: str, max_chars: int) -> str:
    """
    Bound *content* to *max_chars*, preferring to cut at a line end.

    Truncated text is terminated with ``...`` on its own line.
    """
    if len(content) <= max_chars:
        return content
    head = content[:max_chars]
    cut = head.rfind("\n")
    if cut > max_chars * _LINE_BREAK_WINDOW:
        head = head[:cut]
    return head.rstrip() + "\n" + _ELLIPSIS


def file_name(file_path: str) -> str:
    """Base name of a repo path, accepting either separator."""
    if not file_path:
        return ""
    return PurePosixPath(file_path.replace("\\", "/")).name


def synthesize(node: EmbeddableNode, config: EmbeddingConfig = DEFAULT_CONFIG) -> str:
    """
    Build the text embedded for *node*.

    :param node: Node to describe.
    :param config: Supplies ``max_content_chars`` and ``include_file_path``.
    :return: Newline-joined text; header lines only when content is empty.
    """
    if node.label == "File":
        parts = _file_header(node, config)
        limit = min(config.max_content_chars, _FILE_PREVIEW_CHARS)
    else:
        parts = _symbol_header(node, config)
        limit = config.max_content_chars

    body = truncate_content(clean_content(node.content or ""), limit)
    if body:
        parts.append("")
        parts.append(body)
    return "\n".join(parts)


def synthesize_batch(
    nodes: Sequence[EmbeddableNode],
    config: EmbeddingConfig = DEFAULT_CONFIG,
) -> List[str]:
    """:func:`synthesize` over *nodes*, preserving order."""
    return [synthesize(n, config) for n in nodes]


def _symbol_header(node: EmbeddableNode, config: EmbeddingConfig) -> List[str]:
    parts = [f"{node.label}: {node.name}"]
    if config.include_file_path and node.file_path:
        parts.append(f"File: {file_name(node.file_path)}")
    if node.start_line is not None and node.end_line is not None:
        parts.append(f"Lines: {node.start_line}-{node.end_line}")
    return parts


def _file_header(node: EmbeddableNode, config: EmbeddingConfig) -> List[str]:
    parts = [f"File: {node.name or file_name(node.file_path)}"]
    if config.include_file_path and node.file_path:
        parts.append(f"Path: {node.file_path}")
    return parts
