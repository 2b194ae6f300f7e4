"""In-memory nearest-neighbour index of enrolled identities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from faceauth.errors import DimensionMismatch, IndexNotLoaded, InsufficientSamples, InvalidFormat
from faceauth.recognition.aggregate import aggregate_embeddings
from faceauth.recognition.locking import ReadWriteLock
from faceauth.recognition.matcher import find_best_match
from faceauth.types import MatchResult, as_embedding, is_degenerate, l2_normalize

LOGGER = logging.getLogger("faceauth.recognition.index")

DEFAULT_MAX_SAMPLES = 5


class IndexState(Enum):
    EMPTY = "empty"
    LOADED = "loaded"


@dataclass(frozen=True)
class IndexEntry:
    """One identity and its normalised embedding variants, shape (N, D)."""

    identity_id: str
    variants: np.ndarray

    @property
    def dimension(self) -> int:
        return int(self.variants.shape[1])

    @classmethod
    def from_variants(cls, identity_id: str, variants: Sequence) -> "IndexEntry":
        """Normalise precomputed variants, dropping degenerate ones."""
        kept = []
        for i, raw in enumerate(variants):
            vec = l2_normalize(as_embedding(raw, name=f"{identity_id} variant {i}"))
            if not is_degenerate(vec):
                kept.append(vec)
        if not kept:
            raise InsufficientSamples(f"Identity {identity_id!r} has no non-degenerate embedding")
        dimension = kept[0].size
        if any(vec.size != dimension for vec in kept):
            raise DimensionMismatch(f"Identity {identity_id!r} has variants of differing lengths")
        matrix = np.stack(kept, axis=0)
        matrix.setflags(write=False)
        return cls(identity_id=str(identity_id), variants=matrix)

    @classmethod
    def from_samples(cls, identity_id: str, samples: Sequence, max_samples: int = DEFAULT_MAX_SAMPLES) -> "IndexEntry":
        """Build ``[mean, median, *samples[:max_samples]]`` from raw samples."""
        usable = [
            vec
            for vec in (l2_normalize(as_embedding(s, name=f"{identity_id} sample {i}")) for i, s in enumerate(samples))
            if not is_degenerate(vec)
        ]
        if not usable:
            raise InsufficientSamples(f"Identity {identity_id!r} has no non-degenerate embedding")
        aggregate = aggregate_embeddings(usable, max_samples=max_samples)
        return cls.from_variants(identity_id, [aggregate.mean, aggregate.median, *aggregate.samples])


EntryLike = Union[IndexEntry, Tuple[str, Sequence]]


@dataclass(frozen=True)
class IndexStats:
    count: int
    version: int
    loaded: bool
    total_embeddings: int


class MatchIndex:
    """Thread-safe identity index; searches run in parallel, updates exclusively.

    The entry collection is an immutable tuple replaced wholesale on every
    update, so a search always sees one complete version of the index.
    """

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES) -> None:
        self.max_samples = max_samples
        self._lock = ReadWriteLock()
        self._entries: Tuple[IndexEntry, ...] = ()
        self._version = 0
        self._state = IndexState.EMPTY

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def loaded(self) -> bool:
        return self._state is IndexState.LOADED

    @property
    def version(self) -> int:
        return self._version

    def _coerce(self, item: EntryLike) -> IndexEntry:
        if isinstance(item, IndexEntry):
            variants = np.asarray(item.variants)
            if variants.ndim != 2:
                raise InvalidFormat(
                    f"Identity {item.identity_id!r} variants must be an (N, D) matrix, got shape {variants.shape}"
                )
            return IndexEntry.from_variants(item.identity_id, variants)
        identity_id, embeddings = item
        return IndexEntry.from_samples(identity_id, embeddings, self.max_samples)

    def rebuild(self, entries: Iterable[EntryLike]) -> IndexStats:
        """Atomically replace the whole entry set.

        The new set is assembled before the write lock is taken; if anything
        raises while loading, the previous entries and version are untouched.
        Identities with no usable embedding are skipped.
        """
        built: List[IndexEntry] = []
        positions = {}
        for item in entries:
            try:
                entry = self._coerce(item)
            except InsufficientSamples as exc:
                LOGGER.warning("Skipping identity during rebuild: %s", exc)
                continue
            if entry.identity_id in positions:
                built[positions[entry.identity_id]] = entry
            else:
                positions[entry.identity_id] = len(built)
                built.append(entry)
        new_entries = tuple(built)
        with self._lock.write_locked():
            self._entries = new_entries
            self._version += 1
            self._state = IndexState.LOADED
            stats = self._stats_unlocked()
        LOGGER.info("Index rebuilt with %d identities (version %d)", stats.count, stats.version)
        return stats

    def add(self, identity_id: str, embeddings: Sequence) -> IndexStats:
        """Insert or replace one identity from its raw samples."""
        entry = IndexEntry.from_samples(identity_id, embeddings, self.max_samples)
        with self._lock.write_locked():
            entries = list(self._entries)
            for i, existing in enumerate(entries):
                if existing.identity_id == entry.identity_id:
                    entries[i] = entry
                    break
            else:
                entries.append(entry)
            self._entries = tuple(entries)
            self._version += 1
            self._state = IndexState.LOADED
            stats = self._stats_unlocked()
        LOGGER.info(
            "Index add identity=%s variants=%d version=%d",
            entry.identity_id,
            entry.variants.shape[0],
            stats.version,
        )
        return stats

    def remove(self, identity_id: str) -> bool:
        """Delete an identity; returns whether anything was removed."""
        with self._lock.write_locked():
            remaining = tuple(e for e in self._entries if e.identity_id != str(identity_id))
            removed = len(remaining) < len(self._entries)
            if removed:
                self._entries = remaining
                self._version += 1
                version = self._version
        if removed:
            LOGGER.info("Index remove identity=%s version=%d", identity_id, version)
        return removed

    def clear(self) -> None:
        with self._lock.write_locked():
            self._entries = ()
            self._version += 1
            self._state = IndexState.EMPTY
        LOGGER.info("Index cleared")

    def search(
        self,
        query: Sequence,
        threshold: float = 0.6,
        margin: float = 0.05,
        top_k: int = 5,
    ) -> Optional[MatchResult]:
        """Find the enrolled identity closest to ``query``.

        Returns ``None`` when the best distance is not below ``threshold`` or
        when the runner-up is closer than ``margin`` to the best.
        """
        query_vec = l2_normalize(as_embedding(query, name="query"))
        with self._lock.read_locked():
            if self._state is IndexState.EMPTY:
                raise IndexNotLoaded("Match index is empty; call rebuild() or add() first")
            entries = self._entries
        comparable = [(e.identity_id, e.variants) for e in entries if e.dimension == query_vec.size]
        if entries and not comparable:
            raise DimensionMismatch(
                f"Query length {query_vec.size} matches no enrolled embedding "
                f"(index dimensions: {sorted({e.dimension for e in entries})})"
            )
        result = find_best_match(query_vec, comparable, threshold=threshold, margin=margin, top_k=top_k)
        if result is not None:
            LOGGER.debug(
                "Index match identity=%s distance=%.4f second=%s confidence=%.3f",
                result.identity_id,
                result.distance,
                "none" if result.second_distance is None else f"{result.second_distance:.4f}",
                result.confidence,
            )
        return result

    def _stats_unlocked(self) -> IndexStats:
        return IndexStats(
            count=len(self._entries),
            version=self._version,
            loaded=self._state is IndexState.LOADED,
            total_embeddings=sum(e.variants.shape[0] for e in self._entries),
        )

    def stats(self) -> IndexStats:
        with self._lock.read_locked():
            return self._stats_unlocked()

    def __len__(self) -> int:
        return len(self._entries)
