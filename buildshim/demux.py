"""Per-request queues that collect the packets answering one request."""

from __future__ import annotations

import queue
from typing import Any, Callable

from .context import Cancelled, Context
from .filters import FilterFn
from .messages import ClientStream

_POLL_INTERVAL = 0.01
DEFAULT_CAPACITY = 32


class Demultiplexer:
    """Buffers packets belonging to one request id until they are received."""

    def __init__(
        self,
        ctx: Context,
        demux_id: str,
        packet_filter: FilterFn,
        close_fn: Callable[[Any], None],
    ) -> None:
        self.ctx = ctx
        self.id = demux_id
        self._filter = packet_filter
        self._close_fn = close_fn
        self._queue: queue.Queue[ClientStream] = queue.Queue(maxsize=DEFAULT_CAPACITY)

    def closed(self) -> bool:
        return self.ctx.cancelled()

    def _abandon(self) -> None:
        self._close_fn(self.id)
        raise Cancelled()

    def accept(self, packet: ClientStream) -> None:
        """Check the packet against the filter and enqueue it."""
        self._filter(packet)
        while True:
            if self.ctx.cancelled():
                self._abandon()
            try:
                self._queue.put(packet, timeout=_POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def recv(self) -> ClientStream:
        """Block until a packet arrives or the context is cancelled."""
        while True:
            if self.ctx.cancelled():
                self._abandon()
            try:
                return self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue