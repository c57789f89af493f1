"""Packets exchanged over the duplex build stream."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Union


class TransferDirection(enum.Enum):
    INTO = enum.auto()
    OUTOF = enum.auto()


class StdioType(enum.Enum):
    STDIN = enum.auto()
    STDOUT = enum.auto()
    STDERR = enum.auto()


@dataclass(eq=False)
class ImageTransfer:
    id: str = ""
    direction: TransferDirection = TransferDirection.INTO
    tag: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    data: bytes = b""
    complete: bool = False


@dataclass(eq=False)
class BuildTransfer:
    id: str = ""
    direction: TransferDirection = TransferDirection.INTO
    metadata: dict[str, str] = field(default_factory=dict)
    data: bytes = b""
    complete: bool = False


@dataclass(eq=False)
class Command:
    id: str = ""
    command: str = ""


@dataclass(eq=False)
class IO:
    type: StdioType = StdioType.STDOUT
    data: bytes = b""


ClientPacket = Union[ImageTransfer, BuildTransfer, Command]
ServerPacket = Union[ImageTransfer, BuildTransfer, Command, IO]


def _as(packet, cls):
    return packet if isinstance(packet, cls) else None


@dataclass(eq=False)
class ClientStream:
    """A packet sent by the client; ``packet`` holds at most one payload."""

    build_id: str = ""
    packet: ClientPacket | None = None

    @property
    def image_transfer(self) -> ImageTransfer | None:
        return _as(self.packet, ImageTransfer)

    @property
    def build_transfer(self) -> BuildTransfer | None:
        return _as(self.packet, BuildTransfer)

    @property
    def command(self) -> Command | None:
        return _as(self.packet, Command)


@dataclass(eq=False)
class ServerStream:
    """A packet sent to the client; ``packet`` holds at most one payload."""

    build_id: str = ""
    packet: ServerPacket | None = None

    @property
    def image_transfer(self) -> ImageTransfer | None:
        return _as(self.packet, ImageTransfer)

    @property
    def build_transfer(self) -> BuildTransfer | None:
        return _as(self.packet, BuildTransfer)

    @property
    def command(self) -> Command | None:
        return _as(self.packet, Command)

    @property
    def io(self) -> IO | None:
        return _as(self.packet, IO)