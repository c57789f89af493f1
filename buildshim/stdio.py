"""Write-only stdio stream that forwards build output to the client."""

from __future__ import annotations

import base64
import binascii
import contextlib
import io
import json
import os
import struct
import uuid
from dataclasses import dataclass

from .context import Context
from .errors import IgnorePacket, NotATTY, StreamError
from .filters import filter_by_build_id
from .messages import IO, ClientStream, ServerStream, StdioType
from .stage import BaseStage


class WriteOnlyStreamError(io.UnsupportedOperation):
    """Raised when reading from the write-only stdio stream."""

    def __init__(self, message: str = "stdio stream is write-only") -> None:
        super().__init__(message)


_STRING_FIELDS = ("command_type", "code")
_INT_FIELDS = ("rows", "cols")


@dataclass
class TerminalCommand:
    """A terminal control command, e.g. a window resize ("winch") or an "ack"."""

    command_type: str = ""
    code: str = ""
    rows: int = 0
    cols: int = 0

    def to_json(self) -> str:
        """Encode as compact JSON, leaving out empty fields."""
        values = {
            name: getattr(self, name)
            for name in (*_STRING_FIELDS, *_INT_FIELDS)
            if getattr(self, name)
        }
        return json.dumps(values, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> TerminalCommand:
        """Decode a command; raise ValueError on malformed input."""
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise ValueError(f"invalid terminal command JSON: {exc}") from exc
        command = cls()
        if obj is None:
            return command
        if not isinstance(obj, dict):
            raise ValueError("terminal command must be a JSON object")
        fields = (*_STRING_FIELDS, *_INT_FIELDS)
        for key, value in obj.items():
            name = key if key in fields else next(
                (f for f in fields if f.lower() == key.lower()), None
            )
            if name is None or value is None:
                continue
            if name in _STRING_FIELDS:
                if not isinstance(value, str):
                    raise ValueError(f"field {name!r} must be a string")
            elif isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"field {name!r} must be an integer")
            setattr(command, name, value)
        return command


def _decode_raw_base64(text: str) -> bytes:
    if "=" in text:
        raise ValueError("unexpected padding in unpadded base64")
    try:
        return base64.b64decode(text + "=" * (-len(text) % 4), validate=True)
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc


class StdioProxy(BaseStage):
    """Sends everything written to it to the client as stderr packets.

    With ``tty`` a pseudo-terminal is opened so that window-size changes
    sent by the client can be applied to it.
    """

    def __init__(self, ctx: Context, tty: bool) -> None:
        super().__init__()
        self.ctx = ctx
        self._master: int | None = None
        self._slave: int | None = None
        self.slave_name = ""
        if tty:
            self._master, self._slave = os.openpty()
            self.slave_name = os.ttyname(self._slave)

    def __str__(self) -> str:
        return "stdio"

    def name(self) -> str:
        return str(self)

    def filter(self, packet: ClientStream) -> None:
        """Accept terminal "ack" commands; apply "winch" resizes and ignore the rest."""
        cmd = packet.command
        if cmd is None:
            raise IgnorePacket()
        try:
            command = TerminalCommand.from_json(_decode_raw_base64(cmd.command))
        except ValueError:
            raise IgnorePacket() from None
        if command.command_type != "terminal":
            raise IgnorePacket()
        if command.code == "winch":
            if self._master is None:
                raise NotATTY()
            if command.rows > 0 and command.cols > 0:
                self._resize(command.rows, command.cols)
            raise IgnorePacket()
        if command.code == "ack":
            return
        raise StreamError(f"invalid terminal command: {command.code}")

    def _resize(self, rows: int, cols: int) -> None:
        # Unix only; the pseudo-terminal exists only there.
        import fcntl
        import termios

        winsize = struct.pack("HHHH", rows & 0xFFFF, cols & 0xFFFF, 0, 0)
        with contextlib.suppress(OSError):
            fcntl.ioctl(self._master, termios.TIOCSWINSZ, winsize)

    def read(self, size: int = -1) -> bytes:
        raise WriteOnlyStreamError()

    def write(self, data: bytes) -> int:
        """Send ``data`` as a stderr packet and wait for the client's reply."""
        payload = bytes(data)
        request_id = str(uuid.uuid4())
        ctx = self.ctx.child()
        try:
            self.request(
                ctx,
                ServerStream(
                    build_id=request_id,
                    packet=IO(type=StdioType.STDERR, data=payload),
                ),
                request_id,
                filter_by_build_id,
            )
        finally:
            ctx.cancel()
        return len(payload)

    def fileno(self) -> int:
        """The pseudo-terminal's descriptor, or 0 when there is none."""
        return self._master if self._master is not None else 0

    def close(self) -> None:
        for fd in (self._master, self._slave):
            if fd is not None:
                with contextlib.suppress(OSError):
                    os.close(fd)
        self._master = None
        self._slave = None