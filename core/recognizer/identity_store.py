# ============================================================
# Face Identity Engine
# core/recognizer/identity_store.py
# ============================================================
# Immutable, versioned snapshot of the identity database.
#
# A snapshot maps person name → FaceIdentity (one or more
# descriptors, one per accepted reference photo). Snapshots are
# built by the IndexLoader, installed by the FaceDatabase, and
# never modified after construction, so any number of threads
# can read one without locking.
#
# Key data types:
#   FaceIdentity   — name + non-empty tuple of FaceEmbedding
#   IdentityStore  — sorted read-only mapping + gallery matrix
#   LoadWarning    — one non-fatal problem found while loading
# ============================================================

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np

from core.recognizer.base_recognizer import (
    FaceEmbedding,
    cosine_similarity,
    l2_normalise_rows,
)


# ============================================================
# Load warnings
# ============================================================

class WarningKind(str, Enum):
    """Category of a non-fatal problem found while loading the database."""

    UNSUPPORTED_FORMAT = "unsupported_format"
    UNREADABLE_IMAGE = "unreadable_image"
    DETECTION_FAILED = "detection_failed"
    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    EMBEDDING_FAILED = "embedding_failed"
    DIMENSION_MISMATCH = "dimension_mismatch"
    EMPTY_IDENTITY = "empty_identity"
    INVALID_NAME = "invalid_name"
    UNREADABLE_DIRECTORY = "unreadable_directory"


@dataclass(frozen=True)
class LoadWarning:
    """
    A single non-fatal problem encountered by the IndexLoader.

    Attributes:
        kind:      Warning category.
        path:      File or directory the warning refers to.
        identity:  Identity name the entry belongs to, if known.
        message:   Human-readable description.
    """

    kind: WarningKind
    path: str
    identity: Optional[str] = None
    message: str = ""

    def __str__(self) -> str:
        who = f"[{self.identity}] " if self.identity else ""
        return f"{self.kind.value}: {who}{self.path} — {self.message}"


# ============================================================
# Identity
# ============================================================

@dataclass(frozen=True)
class FaceIdentity:
    """
    A single named identity in a snapshot.

    Attributes:
        name:         Display name (directory name, trimmed).
        descriptors:  One FaceEmbedding per accepted reference photo.
                      Never empty.
    """

    name: str
    descriptors: Tuple[FaceEmbedding, ...]

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Identity name must not be empty.")
        if not self.descriptors:
            raise ValueError(f"Identity {self.name!r} has no descriptors.")
        object.__setattr__(self, "descriptors", tuple(self.descriptors))

    @property
    def num_descriptors(self) -> int:
        return len(self.descriptors)

    @property
    def source_paths(self) -> List[str]:
        return [d.source_path for d in self.descriptors if d.source_path]

    def best_similarity(self, query: np.ndarray) -> float:
        """
        Highest cosine similarity between *query* and any descriptor
        (max-pool: one good reference photo carries the identity).
        """
        query = np.asarray(query, dtype=np.float32).reshape(-1)
        return float(max(cosine_similarity(query, d.vector) for d in self.descriptors))

    def __repr__(self) -> str:
        return (
            f"FaceIdentity("
            f"name={self.name!r}, "
            f"descriptors={self.num_descriptors})"
        )


# ============================================================
# IdentityStore (snapshot)
# ============================================================

@dataclass(frozen=True, eq=False)
class IdentityStore:
    """
    Immutable, versioned mapping of name → FaceIdentity.

    Identities are kept in lexicographic name order; that order is the
    enumeration order used for deterministic tie-breaking. The gallery
    matrix stacks every descriptor (L2-normalised) in the same order,
    with ``row_owner[i]`` giving the identity index of gallery row i.

    Attributes:
        identities:  Read-only mapping name → FaceIdentity.
        version:     Monotonically increasing snapshot version.
        root:        Directory the snapshot was loaded from, if any.
        created_at:  Unix timestamp of construction.
    """

    identities: Mapping[str, FaceIdentity]
    version: int = 0
    root: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    names: Tuple[str, ...] = field(init=False, repr=False)
    gallery: np.ndarray = field(init=False, repr=False)
    row_owner: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        ordered: Dict[str, FaceIdentity] = {
            name: self.identities[name] for name in sorted(self.identities)
        }
        for name, identity in ordered.items():
            if identity.name != name:
                raise ValueError(
                    f"Identity key {name!r} does not match identity name {identity.name!r}."
                )

        vectors: List[np.ndarray] = []
        owners: List[int] = []
        dims = set()
        for idx, identity in enumerate(ordered.values()):
            for descriptor in identity.descriptors:
                vectors.append(descriptor.vector)
                owners.append(idx)
                dims.add(descriptor.dim)

        if len(dims) > 1:
            raise ValueError(f"Descriptors have mixed dimensions: {sorted(dims)}")

        if vectors:
            gallery = l2_normalise_rows(np.stack(vectors, axis=0))
        else:
            gallery = np.zeros((0, 0), dtype=np.float32)
        gallery.flags.writeable = False
        row_owner = np.asarray(owners, dtype=np.int64)
        row_owner.flags.writeable = False

        object.__setattr__(self, "identities", MappingProxyType(ordered))
        object.__setattr__(self, "names", tuple(ordered))
        object.__setattr__(self, "gallery", gallery)
        object.__setattr__(self, "row_owner", row_owner)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def empty(cls, version: int = 0, root: Optional[str] = None) -> "IdentityStore":
        return cls(identities={}, version=version, root=root)

    @classmethod
    def from_identities(
        cls,
        identities: Iterable[FaceIdentity],
        *,
        version: int = 0,
        root: Optional[str] = None,
    ) -> "IdentityStore":
        """
        Build a snapshot from FaceIdentity records.

        Raises:
            ValueError: If two identities share a name.
        """
        mapping: Dict[str, FaceIdentity] = {}
        for identity in identities:
            if identity.name in mapping:
                raise ValueError(f"Duplicate identity name: {identity.name!r}")
            mapping[identity.name] = identity
        return cls(identities=mapping, version=version, root=root)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_empty(self) -> bool:
        return not self.names

    @property
    def count(self) -> int:
        """Number of identities."""
        return len(self.names)

    @property
    def total_descriptors(self) -> int:
        return int(self.gallery.shape[0])

    @property
    def dim(self) -> Optional[int]:
        """Descriptor dimension, or None for an empty snapshot."""
        return int(self.gallery.shape[1]) if self.total_descriptors else None

    def get(self, name: str) -> Optional[FaceIdentity]:
        return self.identities.get(name)

    def stats(self) -> dict:
        """Summary statistics for diagnostics and the HTTP health route."""
        counts = [i.num_descriptors for i in self.identities.values()]
        return {
            "version":             self.version,
            "count":               self.count,
            "total_descriptors":   self.total_descriptors,
            "avg_descriptors":     round(sum(counts) / len(counts), 2) if counts else 0.0,
            "min_descriptors":     min(counts) if counts else 0,
            "max_descriptors":     max(counts) if counts else 0,
            "dim":                 self.dim,
            "identities":          list(self.names),
            "root":                self.root,
        }

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return self.count

    def __contains__(self, name: object) -> bool:
        return name in self.identities

    def __iter__(self) -> Iterator[FaceIdentity]:
        return iter(self.identities.values())

    def __repr__(self) -> str:
        return (
            f"IdentityStore("
            f"version={self.version}, "
            f"identities={self.count}, "
            f"descriptors={self.total_descriptors})"
        )
