"""Packet filters: callables that accept a packet or raise IgnorePacket."""

from __future__ import annotations

from typing import Callable

from .errors import IgnorePacket, UninitializedStageError
from .messages import ClientStream

FilterFn = Callable[[ClientStream], None]
FilterFactory = Callable[[str], FilterFn]


class FunctionFilter:
    """Wraps a filter function as an object with a ``filter`` method."""

    def __init__(self, func: FilterFn | None) -> None:
        self.func = func

    def filter(self, packet: ClientStream) -> None:
        if self.func is None:
            raise UninitializedStageError("filter function")
        self.func(packet)


def filter_chain(*args: FilterFn) -> FilterFn:
    """Combine filters; the first one that raises stops the chain."""

    def chained(packet: ClientStream) -> None:
        for fn in args:
            fn(packet)

    return chained


def filter_by_build_id(build_id: str) -> FilterFn:
    def check(packet: ClientStream) -> None:
        if packet.build_id != build_id:
            raise IgnorePacket()

    return check


def filter_by_image_transfer_id(transfer_id: str) -> FilterFn:
    def check(packet: ClientStream) -> None:
        transfer = packet.image_transfer
        if transfer is None or transfer.id != transfer_id:
            raise IgnorePacket()

    return check


def filter_by_build_transfer_id(transfer_id: str) -> FilterFn:
    def check(packet: ClientStream) -> None:
        transfer = packet.build_transfer
        if transfer is None or transfer.id != transfer_id:
            raise IgnorePacket()

    return check


def filter_by_command_id(command_id: str) -> FilterFn:
    def check(packet: ClientStream) -> None:
        cmd = packet.command
        if cmd is None or cmd.id != command_id:
            raise IgnorePacket()

    return check


def filter_allow_all(packet: ClientStream) -> None:
    """Accept every packet."""