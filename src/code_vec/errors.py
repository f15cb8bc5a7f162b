#!/usr/bin/env python3
"""
errors.py

Exception taxonomy for code_vec.

Everything raised deliberately by the package derives from
:class:`CodeVecError`.  Failures crossing the graph-store boundary are
:class:`UpstreamQueryError`; the two index-lifecycle cases the rest of the
package needs to recognise (index already present, index absent) are
subclasses of it so that callers catching the broad class still see them.
"""

from __future__ import annotations

import re

from code_vec.config import EMBEDDING_TABLE


class CodeVecError(Exception):
    """Base class for all code_vec errors."""


class NotInitializedError(CodeVecError):
    """The embedding engine was used before :meth:`initialize` completed."""


class ModelLoadError(CodeVecError):
    """The embedding model could not be downloaded or loaded."""


class EmbeddingDimensionMismatchError(CodeVecError):
    """
    A vector's length disagrees with the index dimension.

    :param expected: Dimension declared by the model / index.
    :param actual: Length of the offending vector.
    :param node_id: Node the vector belongs to, if known.
    """

    def __init__(self, expected: int, actual: int, node_id: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.node_id = node_id
        where = f" for node {node_id!r}" if node_id is not None else ""
        super().__init__(
            f"Embedding dimension mismatch{where}: expected {expected}, got {actual}"
        )


class UpstreamQueryError(CodeVecError):
    """
    A query failed inside the graph store.

    :param message: Human-readable message.
    :param query: Query text that failed, if known.
    """

    def __init__(self, message: str, query: str | None = None) -> None:
        super().__init__(message)
        self.query = query


class IndexAlreadyExistsError(UpstreamQueryError):
    """``CREATE_VECTOR_INDEX`` found an index with the same name."""


class IndexMissingError(UpstreamQueryError):
    """A vector query referenced an index that has not been built."""


# ---------------------------------------------------------------------------
# Message classification
# ---------------------------------------------------------------------------

_INDEX_WORD = re.compile(r"\bindex\b")
_EXISTS_MARKERS = ("already exists",)
_ABSENT_MARKERS = ("does not exist", "doesn't exist", "not found")
_NO_INDEX_MARKERS = ("doesn't have an index", "does not have an index")
_EMBEDDING_TABLE_ABSENT = re.compile(
    rf"\btable {EMBEDDING_TABLE.lower()}\b.*\b(does not exist|doesn't exist)"
)


def is_index_exists_message(message: str) -> bool:
    """Return ``True`` if a store error message reports a duplicate index."""
    text = message.lower()
    return bool(_INDEX_WORD.search(text)) and any(m in text for m in _EXISTS_MARKERS)


def is_index_missing_message(message: str) -> bool:
    """
    Return ``True`` if a store error message reports an absent vector index.

    Only messages naming an index, or the embedding table itself, qualify;
    a missing function, another table or a missing file does not.
    """
    text = message.lower()
    if any(m in text for m in _NO_INDEX_MARKERS):
        return True
    if _INDEX_WORD.search(text) and any(m in text for m in _ABSENT_MARKERS):
        return True
    return bool(_EMBEDDING_TABLE_ABSENT.search(text))


def classify_store_error(exc: BaseException, query: str | None = None) -> UpstreamQueryError:
    """
    Map a raw store exception onto the taxonomy.

    Already-classified errors are returned unchanged.
    """
    if isinstance(exc, UpstreamQueryError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if is_index_exists_message(message):
        return IndexAlreadyExistsError(message, query)
    if is_index_missing_message(message):
        return IndexMissingError(message, query)
    return UpstreamQueryError(message, query)
