# ============================================================
# Face Identity Engine
# core/recognizer/matcher.py
# ============================================================
# Exhaustive best-match search of a query descriptor against an
# IdentityStore snapshot.
#
# Semantics:
#   - Empty store            → ("unknown", 0.0), nothing computed
#   - Per-descriptor max     → an identity is matched by its single
#                              best reference photo, not an average
#   - Ties                   → first identity in name order
#   - best >= threshold      → (name, best)
#   - otherwise              → ("unknown", best)
#
# Pure computation: no I/O, no locks, never mutates the store.
# ============================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np
from loguru import logger

from core.recognizer.base_recognizer import FaceEmbedding
from core.recognizer.identity_store import IdentityStore

UNKNOWN = "unknown"


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of one identification.

    Attributes:
        name:   Matched identity name, or ``"unknown"``.
        score:  Best similarity found against the snapshot, reported even
                when the match is rejected. 0.0 when no comparison was
                possible.
    """

    name: str
    score: float

    @classmethod
    def unknown(cls, score: float = 0.0) -> "MatchResult":
        return cls(name=UNKNOWN, score=float(score))

    @property
    def is_unknown(self) -> bool:
        return self.name.lower() == UNKNOWN

    @property
    def is_known(self) -> bool:
        return not self.is_unknown

    def to_dict(self) -> dict:
        return {"name": self.name, "score": self.score}

    def __str__(self) -> str:
        if self.is_unknown:
            return self.name
        return f"{self.name} ({self.score:.2f})"


def _query_vector(
    query: Union[FaceEmbedding, np.ndarray], store: IdentityStore
) -> Optional[np.ndarray]:
    """
    Return the L2-normalised float32 query vector, validated against *store*.

    None for a zero-norm query, which cannot be compared with anything.
    """
    if isinstance(query, FaceEmbedding):
        vec = query.vector
    elif isinstance(query, np.ndarray):
        vec = query.reshape(-1).astype(np.float32)
    else:
        raise TypeError(
            f"Expected FaceEmbedding or np.ndarray, got {type(query).__name__}."
        )

    if vec.size == 0:
        raise ValueError("Query descriptor is empty.")
    if not np.isfinite(vec).all():
        raise ValueError("Query descriptor contains NaN or Inf values.")
    if store.dim is not None and vec.shape[0] != store.dim:
        raise ValueError(
            f"Query dimension {vec.shape[0]} does not match "
            f"snapshot dimension {store.dim}."
        )

    norm = float(np.linalg.norm(vec))
    if norm < 1e-10:
        return None
    return vec / norm


def _descriptor_scores(query_vec: np.ndarray, store: IdentityStore) -> np.ndarray:
    """Similarity of *query_vec* to every gallery row, in store enumeration order."""
    return np.clip(store.gallery @ query_vec, -1.0, 1.0)


def match_one(
    query: Union[FaceEmbedding, np.ndarray],
    store: IdentityStore,
    threshold: float,
) -> MatchResult:
    """
    Find the best-scoring identity for *query* in *store*.

    Args:
        query:      Query descriptor (FaceEmbedding or raw (D,) array).
        store:      Snapshot to search.
        threshold:  Minimum similarity required to accept a match.

    Returns:
        MatchResult with the identity name, or ``"unknown"`` when the
        store is empty or the best score is below *threshold*. A
        zero-norm query is ``("unknown", 0.0)`` at any threshold.
        A zero-norm query is ``("unknown", 0.0)``.

    Raises:
        ValueError: If the query is malformed or its dimension does not
                    match the snapshot.
        TypeError:  If the query is neither a FaceEmbedding nor an ndarray.
    """
    if store.is_empty:
        return MatchResult.unknown(0.0)

    query_vec = _query_vector(query, store)
    if query_vec is None:
        logger.debug("match_one: zero-norm query, reporting unknown.")
        return MatchResult.unknown(0.0)
    scores = _descriptor_scores(query_vec, store)

    # np.argmax returns the first maximal row; rows follow name order
    best_row = int(np.argmax(scores))
    best_score = float(scores[best_row])
    best_name = store.names[int(store.row_owner[best_row])]

    logger.debug(
        f"match_one: best={best_name!r} score={best_score:.4f} "
        f"threshold={threshold} version={store.version}"
    )

    if best_score >= threshold:
        return MatchResult(name=best_name, score=best_score)
    return MatchResult.unknown(best_score)


def rank_identities(
    query: Union[FaceEmbedding, np.ndarray],
    store: IdentityStore,
    top_k: Optional[int] = None,
) -> List[MatchResult]:
    """
    Score every identity by its best descriptor and rank them.

    Args:
        query:  Query descriptor.
        store:  Snapshot to search.
        top_k:  Keep at most this many candidates (None = all).

    Returns:
        MatchResults sorted by descending score, ties by name. No
        threshold is applied. Empty for an empty store or a
        zero-norm query.
    """
    if store.is_empty:
        return []

    query_vec = _query_vector(query, store)
    if query_vec is None:
        return []
    scores = _descriptor_scores(query_vec, store)

    best = np.full(store.count, -np.inf, dtype=np.float32)
    np.maximum.at(best, store.row_owner, scores)

    ranked = sorted(
        (MatchResult(name=store.names[i], score=float(best[i])) for i in range(store.count)),
        key=lambda m: (-m.score, m.name),
    )
    if top_k is not None:
        ranked = ranked[: max(0, top_k)]
    return ranked
