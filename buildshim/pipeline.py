"""Fan a single duplex stream out to independent stages."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Protocol

from .context import Context
from .errors import IgnorePacket
from .messages import ClientStream, ServerStream
from .stage import BaseStage

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.01
SEND_QUEUE_SIZE = 64
RECV_QUEUE_SIZE = 4


class Stream(Protocol):
    def recv(self) -> ClientStream:
        """Return the next packet; raise EOFError when the peer is done."""

    def send(self, packet: ServerStream) -> None:
        """Deliver a packet to the peer."""


class StreamPipeline:
    """Starts each stage's run loop and shuttles packets to and from ``raw``."""

    def __init__(self, parent: Context, raw: Stream, *args: BaseStage) -> None:
        self.ctx = parent.child()
        self.raw = raw
        self.send_queue: queue.Queue[ServerStream] = queue.Queue(maxsize=SEND_QUEUE_SIZE)
        self.stages: list[BaseStage] = list(args)
        self._threads: list[threading.Thread] = []
        for stage in self.stages:
            stage.attach(self.send_queue, queue.Queue(maxsize=RECV_QUEUE_SIZE))
            self._spawn(self._run_stage, stage)

    def _spawn(self, target, *targs) -> None:
        thread = threading.Thread(target=target, args=targs, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _run_stage(self, stage: BaseStage) -> None:
        try:
            stage.run(self.ctx)
        except Exception as exc:
            if not self.ctx.cancelled():
                logger.error("stage %s terminated: %s", stage, exc)
                self.ctx.cancel()

    def _send_loop(self) -> None:
        while not self.ctx.cancelled():
            try:
                packet = self.send_queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self.raw.send(packet)
            except Exception as exc:
                logger.error("send error: %s", exc)
                self.ctx.cancel()
                return

    def _recv_loop(self) -> None:
        while True:
            try:
                packet = self.raw.recv()
            except EOFError:
                self.ctx.cancel()
                return
            except Exception as exc:
                logger.error("recv error: %s", exc)
                self.ctx.cancel()
                return
            handled = False
            for stage in self.stages:
                try:
                    stage.filter(packet)
                except IgnorePacket:
                    continue
                except Exception as exc:
                    logger.warning("filter error in %s: %s", stage, exc)
                    continue
                stage.process(packet)
                handled = True
            if not handled:
                logger.debug("dropped unhandled packet build_id=%r", packet.build_id)

    def run(self) -> None:
        """Pump packets until the stream ends or the pipeline is cancelled."""
        self._spawn(self._send_loop)
        self._spawn(self._recv_loop)
        self.ctx.wait()
        for thread in self._threads:
            thread.join()