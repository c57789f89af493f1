"""Sliding-window read-ahead over a slow random-access reader."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

from .cache import Chunk, ChunkCache

_POLL_INTERVAL = 0.005
_PREFETCH_DELAY = 0.005
_MAX_PREFETCH_OPS = 1000


class RandomAccessReader(Protocol):
    def read_at(self, length: int, offset: int) -> bytes:
        """Return up to ``length`` bytes at ``offset``; fewer at end of data."""


class PrefetchError(Exception):
    default_message = "prefetch failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class OffsetOutOfRangeError(PrefetchError):
    default_message = "offset is out of range"


class ReadFailedError(PrefetchError):
    default_message = "read from underlying reader failed"


class PrefetcherClosedError(PrefetchError):
    default_message = "prefetcher is closed"


@dataclass
class Config:
    """Prefetch tuning. Times are in seconds; ``read_timeout=None`` means no limit."""

    window_size: int = 1 << 20
    chunk_size: int = 1 << 16
    max_parallel_reads: int = 4
    read_timeout: float | None = None
    retry_interval: float = 0.5
    max_retries: int = 3

    def _normalized(self) -> Config:
        default = Config()
        chunk = self.chunk_size if self.chunk_size > 0 else default.chunk_size
        window = self.window_size if self.window_size > 0 else default.window_size
        timeout = self.read_timeout
        if timeout is not None and timeout <= 0:
            timeout = default.read_timeout
        return Config(
            window_size=max(window, chunk),
            chunk_size=chunk,
            max_parallel_reads=(
                self.max_parallel_reads
                if self.max_parallel_reads > 0
                else default.max_parallel_reads
            ),
            read_timeout=timeout,
            retry_interval=(
                self.retry_interval if self.retry_interval > 0 else default.retry_interval
            ),
            max_retries=self.max_retries if self.max_retries >= 0 else default.max_retries,
        )


@dataclass(frozen=True)
class ReadResult:
    """Bytes returned by a read and whether the end of the data was reached."""

    data: bytes
    eof: bool

    def __len__(self) -> int:
        return len(self.data)


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: Chunk | None = None
        self.error: BaseException | None = None


class Prefetcher:
    """Serves ``read_at`` calls from a chunk cache that is filled ahead of the reader."""

    def __init__(self, reader: RandomAccessReader, size: int, config: Config | None = None):
        if reader is None:
            raise ValueError("reader cannot be None")
        self.config = (config or Config())._normalized()
        self._reader = reader
        self._size = size
        self._cache = ChunkCache(self.config.chunk_size)
        self._slots = threading.BoundedSemaphore(self.config.max_parallel_reads)
        self._cancel = threading.Event()
        self._state_lock = threading.Lock()
        self._closed = False
        self._flight_lock = threading.Lock()
        self._flights: dict[int, _Flight] = {}
        self._workers = ThreadPoolExecutor(
            max_workers=self.config.max_parallel_reads + 4,
            thread_name_prefix="prefetch",
        )

    def __enter__(self) -> Prefetcher:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def size(self) -> int:
        return self._size

    def close(self) -> None:
        """Stop background work and drop the cache; later reads raise."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._cancel.set()
        self._workers.shutdown(wait=True, cancel_futures=True)
        self._cache.clear()

    def read_at(self, length: int, offset: int) -> ReadResult:
        """Read up to ``length`` bytes starting at ``offset``."""
        if self._closed:
            raise PrefetcherClosedError()
        if offset < 0:
            raise OffsetOutOfRangeError()
        if length < 0:
            raise ValueError("length must not be negative")
        if length == 0:
            return ReadResult(b"", False)
        if self._size == 0:
            return ReadResult(b"", True)
        if self._size > 0 and offset >= self._size:
            raise OffsetOutOfRangeError()

        chunk_size = self.config.chunk_size
        first = offset // chunk_size
        last = (offset + length - 1) // chunk_size
        self._cache.evict_before(first)

        if self._size > 0 and offset + length > self._size and first == last:
            return ReadResult(b"", True)

        window = self.config.window_size
        window_chunks = max(1, -(-window // chunk_size))
        window_end = first + window_chunks - 1
        if self._size > 0:
            window_end = min(window_end, (self._size - 1) // chunk_size)
        max_prefetch = min(window // chunk_size, _MAX_PREFETCH_OPS)

        for index in range(first, last + 1):
            if not self._cache.has_chunk(index):
                self._submit(self._fetch_in_background, index)

        scheduled = 0
        for index in range(last + 1, window_end + 1):
            if scheduled >= max_prefetch:
                break
            if not self._cache.has_chunk(index):
                scheduled += 1
                self._submit(self._prefetch, index)

        parts: list[bytes] = []
        read = 0
        for index in range(first, last + 1):
            chunk = self._cache.get_chunk(index) or self._fetch_chunk(index)
            start_in_chunk = offset % chunk_size if index == first else 0
            take = chunk.size - start_in_chunk
            if take <= 0:
                break
            take = min(take, length - read)
            parts.append(chunk.data[start_in_chunk : start_in_chunk + take])
            read += take
            if read >= length:
                break

        eof = self._size > 0 and offset + read >= self._size
        return ReadResult(b"".join(parts), eof)

    def _submit(self, task, index: int) -> None:
        try:
            self._workers.submit(task, index)
        except RuntimeError:
            pass  # executor already shut down by close()

    def _fetch_in_background(self, index: int) -> None:
        if self._cancel.is_set() or self._cache.has_chunk(index):
            return
        try:
            self._fetch_chunk(index)
        except PrefetchError:
            pass

    def _prefetch(self, index: int) -> None:
        if self._cancel.wait(_PREFETCH_DELAY) or self._cache.has_chunk(index):
            return
        if not self._slots.acquire(blocking=False):
            return
        try:
            data = self._raw_read(index * self.config.chunk_size)
        except Exception:
            return
        finally:
            self._slots.release()
        self._cache.add_chunk(Chunk(index=index, data=data))

    def _fetch_chunk(self, index: int) -> Chunk:
        """Load a chunk, sharing one underlying load among concurrent callers."""
        with self._flight_lock:
            flight = self._flights.get(index)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._flights[index] = flight
        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.result
        try:
            flight.result = self._load_chunk(index)
            return flight.result
        except BaseException as exc:
            flight.error = exc
            raise
        finally:
            with self._flight_lock:
                del self._flights[index]
            flight.done.set()

    def _load_chunk(self, index: int) -> Chunk:
        cached = self._cache.get_chunk(index)
        if cached is not None:
            return cached
        self._acquire_slot()
        try:
            start = index * self.config.chunk_size
            last_error: Exception | None = None
            for attempt in range(self.config.max_retries + 1):
                if attempt and self._cancel.wait(self.config.retry_interval):
                    raise PrefetcherClosedError()
                try:
                    data = self._timed_read(start)
                except PrefetcherClosedError:
                    raise
                except Exception as exc:
                    last_error = exc
                    continue
                break
            else:
                raise ReadFailedError() from last_error
        finally:
            self._slots.release()
        chunk = Chunk(index=index, data=data)
        self._cache.add_chunk(chunk)
        return chunk

    def _acquire_slot(self) -> None:
        timeout = self.config.read_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._cancel.is_set():
                raise PrefetcherClosedError()
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ReadFailedError()
                wait = min(wait, remaining)
            if self._slots.acquire(timeout=wait):
                return

    def _timed_read(self, start: int) -> bytes:
        timeout = self.config.read_timeout
        if timeout is None:
            return self._raw_read(start)

        outcome: dict[str, object] = {}
        done = threading.Event()

        def target() -> None:
            try:
                outcome["data"] = self._raw_read(start)
            except BaseException as exc:
                outcome["error"] = exc
            finally:
                done.set()

        threading.Thread(target=target, daemon=True).start()
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadFailedError()
            if done.wait(min(_POLL_INTERVAL, remaining)):
                break
            if self._cancel.is_set():
                raise PrefetcherClosedError()
        if "error" in outcome:
            raise outcome["error"]
        return outcome["data"]

    def _raw_read(self, start: int) -> bytes:
        chunk_size = self.config.chunk_size
        try:
            data = bytes(self._reader.read_at(chunk_size, start))
        except EOFError:
            data = b""
        return data[:chunk_size]