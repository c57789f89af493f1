"""Chunk cache with LRU eviction, a sliding lower bound and an interval index."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field

DEFAULT_MAX_CACHE_SIZE = 1024


@dataclass(eq=False)
class Chunk:
    """A fixed-size slice of the underlying data, identified by its chunk index."""

    index: int
    data: bytes = b""
    last_used: int = 0

    @property
    def size(self) -> int:
        """Number of valid bytes held by the chunk."""
        return len(self.data)


@dataclass(eq=False)
class _Node:
    start: int
    end: int
    max_end: int
    chunks: dict[int, Chunk] = field(default_factory=dict)
    left: _Node | None = None
    right: _Node | None = None


class ChunkCache:
    """Thread-safe store of chunks keyed by index.

    ``last_used`` stamps come from a logical clock, so the least recently
    touched chunk is always evicted first, even when touches happen within
    the same clock tick.
    """

    def __init__(self, chunk_size: int) -> None:
        self.chunk_size = chunk_size
        self.max_cache_size = DEFAULT_MAX_CACHE_SIZE
        self.evict_count = DEFAULT_MAX_CACHE_SIZE // 10
        self.min_index = 0
        self._lock = threading.Lock()
        self._chunks: dict[int, Chunk] = {}
        self._tree: _Node | None = None
        self._clock = itertools.count(1)

    def has_chunk(self, index: int) -> bool:
        with self._lock:
            return index in self._chunks

    def __contains__(self, index: object) -> bool:
        with self._lock:
            return index in self._chunks

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def indices(self) -> list[int]:
        """Indices of the cached chunks, in ascending order."""
        with self._lock:
            return sorted(self._chunks)

    def get_chunk(self, index: int) -> Chunk | None:
        """Return the cached chunk and mark it as recently used, or None."""
        with self._lock:
            chunk = self._chunks.get(index)
            if chunk is not None:
                chunk.last_used = next(self._clock)
            return chunk

    def add_chunk(self, chunk: Chunk) -> None:
        """Store a chunk unless it lies below the sliding lower bound."""
        with self._lock:
            if chunk.index < self.min_index:
                return
            chunk.last_used = next(self._clock)
            self._chunks[chunk.index] = chunk
            self._insert(chunk.index, chunk)
            if len(self._chunks) > self.max_cache_size:
                self._evict_oldest()

    def evict_before(self, min_index: int) -> None:
        """Drop every chunk below ``min_index`` and refuse such chunks later."""
        with self._lock:
            if min_index <= self.min_index:
                return
            self.min_index = min_index
            for index in [i for i in self._chunks if i < min_index]:
                del self._chunks[index]

    def find_overlapping_chunks(self, start: int, end: int) -> list[Chunk]:
        """Chunks indexed in the interval tree whose index lies in [start, end]."""
        with self._lock:
            result: list[Chunk] = []
            stack: list[_Node] = []
            node = self._tree
            while stack or node is not None:
                while node is not None and start <= node.max_end:
                    stack.append(node)
                    node = node.left
                if not stack:
                    break
                node = stack.pop()
                if node.start <= end and start <= node.end:
                    result.extend(
                        ch for ch in node.chunks.values() if start <= ch.index <= end
                    )
                node = node.right if end >= node.start else None
            return result

    def remove_chunk(self, index: int) -> None:
        with self._lock:
            self._chunks.pop(index, None)
            if not self._chunks:
                self._tree = None

    def clear(self) -> None:
        with self._lock:
            self._chunks = {}
            self._tree = None

    def _insert(self, index: int, chunk: Chunk) -> None:
        if self._tree is None:
            self._tree = _Node(index, index, index, {index: chunk})
            return
        path: list[_Node] = []
        node = self._tree
        while True:
            path.append(node)
            if index <= node.start:
                if node.left is None:
                    node.left = _Node(index, index, index, {index: chunk})
                    break
                node = node.left
            else:
                if node.right is None:
                    node.right = _Node(index, index, index, {index: chunk})
                    break
                node = node.right
        for visited in path:
            if index > visited.max_end:
                visited.max_end = index
            if visited.start <= index <= visited.end:
                visited.chunks[index] = chunk

    def _evict_oldest(self) -> None:
        if len(self._chunks) <= self.max_cache_size - self.evict_count:
            return
        by_age = sorted(self._chunks.values(), key=lambda ch: ch.last_used)
        for chunk in by_age[: min(self.evict_count, len(by_age))]:
            del self._chunks[chunk.index]
        if len(self._chunks) / self.max_cache_size < 0.5:
            self._rebuild_tree()

    def _rebuild_tree(self) -> None:
        self._tree = None
        for index, chunk in self._chunks.items():
            self._insert(index, chunk)