"""Resolve image references to digests by asking the client over the stream."""

from __future__ import annotations

import posixpath
import re
import uuid
from dataclasses import dataclass
from urllib.parse import unquote

from .context import Context
from .errors import IgnorePacket
from .filters import filter_by_build_id
from .messages import ClientStream, ImageTransfer, ServerStream, TransferDirection
from .stage import BaseStage

_SPLIT = re.compile(r"[:@]")


class ReferenceError(ValueError):
    """An image reference could not be parsed or is incomplete."""


class ResolveError(Exception):
    """The client reported a failure while resolving an image."""


@dataclass(frozen=True)
class Reference:
    """An image reference split into its locator and its tag or digest object."""

    locator: str
    object: str = ""

    @property
    def hostname(self) -> str:
        return self.locator.split("/", 1)[0]

    @property
    def digest(self) -> str:
        """The digest part of the object, or an empty string."""
        at = self.object.rfind("@")
        return self.object[at + 1 :] if at >= 0 else ""

    def __str__(self) -> str:
        if not self.object:
            return self.locator
        if self.object.startswith("@"):
            return self.locator + self.object
        return f"{self.locator}:{self.object}"


def _check_host(host: str) -> None:
    if host.startswith("["):
        return
    if ":" in host:
        port = host.rsplit(":", 1)[1]
        if port and not port.isdigit():
            raise ReferenceError(f'invalid port ":{port}" after host')


def parse_reference(ref: str) -> Reference:
    """Split ``host/path[:tag][@digest]`` into locator and object."""
    if "://" in ref:
        raise ReferenceError("invalid reference")
    rest = ref.split("#", 1)[0].split("?", 1)[0]
    slash = rest.find("/")
    authority, path = (rest, "") if slash < 0 else (rest[:slash], rest[slash:])
    host = authority.rpartition("@")[2]
    _check_host(host)
    if not host:
        raise ReferenceError("hostname required")
    path = unquote(path)
    obj = ""
    match = _SPLIT.search(path)
    if match:
        obj = path[match.start() :]
        if obj.startswith(":"):
            obj = obj[1:]
        path = path[: match.start()]
    return Reference(posixpath.normpath(host + path), obj)


@dataclass(frozen=True)
class Platform:
    os: str
    architecture: str = ""
    variant: str = ""

    def format(self) -> str:
        """Render as ``os/arch[/variant]``, or "unknown" without an OS."""
        if not self.os:
            return "unknown"
        return "/".join(part for part in (self.os, self.architecture, self.variant) if part)


class ResolverProxy(BaseStage):
    """Resolves image names to digests and configs by asking the client."""

    def __str__(self) -> str:
        return "resolver"

    def filter(self, packet: ClientStream) -> None:
        transfer = packet.image_transfer
        if transfer is not None and transfer.metadata.get("stage") == str(self):
            return
        raise IgnorePacket()

    def _ask(self, ctx: Context, transfer: ImageTransfer) -> ImageTransfer | None:
        request_id = str(uuid.uuid4())
        transfer.id = request_id
        child = ctx.child()
        try:
            reply = self.request(
                child,
                ServerStream(build_id=request_id, packet=transfer),
                request_id,
                filter_by_build_id,
            )
        finally:
            child.cancel()
        return reply.image_transfer

    def resolve_image_config(
        self, ctx: Context, ref: str, platform: Platform
    ) -> tuple[str, str, bytes]:
        """Return ``(ref, digest, config)`` where config is the image config JSON."""
        if not parse_reference(ref).object:
            raise ReferenceError("object required")
        transfer = ImageTransfer(
            direction=TransferDirection.INTO,
            metadata={
                "os": "linux",
                "stage": "resolver",
                "method": "/resolve",
                "ref": ref,
                "platform": platform.format(),
            },
        )
        reply = self._ask(ctx, transfer)
        if reply is None:
            raise ResolveError("response carries no image transfer")
        if "error" in reply.metadata:
            raise ResolveError(reply.metadata["error"])
        return ref, reply.tag, reply.data