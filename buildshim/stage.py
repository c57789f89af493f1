"""Base class for pipeline stages that answer requests over a shared stream."""

from __future__ import annotations

import json
import logging
import queue
import threading

from .context import Cancelled, Context
from .demux import Demultiplexer
from .errors import IgnorePacket, NoHandlerFound, SendStreamBlocked, UninitializedStageError
from .filters import FilterFactory
from .messages import ClientStream, ServerStream

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.01


class BaseStage:
    """Routes incoming packets to per-request demultiplexers by build id.

    Subclasses override ``filter`` to claim the packets they handle.
    """

    send_timeout = 5.0

    def __init__(self) -> None:
        self.send_queue: queue.Queue[ServerStream] | None = None
        self.recv_queue: queue.Queue[ClientStream] | None = None
        self._demux: dict[str, Demultiplexer] = {}
        self._demux_lock = threading.Lock()

    def __str__(self) -> str:
        return type(self).__name__

    def filter(self, packet: ClientStream) -> None:
        """Accept the packet or raise IgnorePacket; the base stage ignores all."""
        raise IgnorePacket()

    def attach(self, send_queue: queue.Queue, recv_queue: queue.Queue) -> None:
        self.send_queue = send_queue
        self.recv_queue = recv_queue

    def process(self, packet: ClientStream) -> None:
        """Hand a packet to this stage's run loop."""
        if self.recv_queue is None:
            raise UninitializedStageError("receive queue")
        self.recv_queue.put(packet)

    def run(self, ctx: Context) -> None:
        """Dispatch queued packets until ``ctx`` is cancelled, then raise Cancelled."""
        if self.recv_queue is None:
            raise UninitializedStageError("receive queue")
        while True:
            ctx.raise_if_cancelled()
            try:
                packet = self.recv_queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            self._dispatch(packet)

    def _describe(self, packet: ClientStream) -> str:
        return (
            f"build_id={packet.build_id!r} "
            f"image_transfer={packet.image_transfer is not None} "
            f"build_transfer={packet.build_transfer is not None} "
            f"command={packet.command is not None}"
        )

    def _dispatch(self, packet: ClientStream) -> None:
        with self._demux_lock:
            handler = self._demux.get(packet.build_id)
        if handler is None:
            logger.debug(
                "dropping packet with no matching handler (%s): %s",
                self._describe(packet),
                NoHandlerFound(),
            )
            for transfer in (packet.build_transfer, packet.image_transfer):
                if transfer is not None:
                    print(json.dumps(transfer.metadata, indent=1, sort_keys=True))
            return
        if handler.closed():
            logger.debug("handler already closed (%s)", self._describe(packet))
            return
        try:
            handler.accept(packet)
        except IgnorePacket:
            pass
        except Exception as exc:
            logger.warning("handler refused packet: %s", exc)

    def send(self, packet: ServerStream) -> None:
        """Queue a packet for the client; raise SendStreamBlocked on timeout."""
        if self.send_queue is None:
            raise UninitializedStageError("send queue")
        try:
            self.send_queue.put(packet, timeout=self.send_timeout)
        except queue.Full:
            raise SendStreamBlocked() from None

    def _forget(self, request_id: str) -> None:
        with self._demux_lock:
            self._demux.pop(request_id, None)

    def _demux_for(
        self, ctx: Context, request_id: str, filter_factory: FilterFactory
    ) -> tuple[Demultiplexer, bool]:
        with self._demux_lock:
            existing = self._demux.get(request_id)
            if existing is not None:
                return existing, False
            demux = Demultiplexer(ctx, request_id, filter_factory(request_id), self._forget)
            self._demux[request_id] = demux
            return demux, True

    def request(
        self,
        ctx: Context,
        packet: ServerStream,
        request_id: str,
        filter_factory: FilterFactory,
    ) -> ClientStream:
        """Send ``packet`` and wait for the reply that matches ``request_id``."""
        demux, created = self._demux_for(ctx, request_id, filter_factory)
        if not created:
            return demux.recv()
        try:
            self.send(packet)
        except BaseException:
            self._forget(request_id)
            raise
        return demux.recv()

    def recv_filter(
        self, ctx: Context, request_id: str, filter_factory: FilterFactory
    ) -> ClientStream:
        """Wait for the next packet that matches ``request_id``."""
        demux, _ = self._demux_for(ctx, request_id, filter_factory)
        return demux.recv()

    def register_demux(self, request_id: str, demux: Demultiplexer) -> None:
        """Store ``demux`` under ``request_id``, replacing any previous one."""
        with self._demux_lock:
            self._demux[request_id] = demux