import hashlib
import queue
import threading

import pytest

from buildshim.context import Cancelled, Context
from buildshim.errors import IgnorePacket
from buildshim.messages import ClientStream, Command, ImageTransfer
from buildshim.resolver import (
    Platform,
    Reference,
    ReferenceError,
    ResolveError,
    ResolverProxy,
    parse_reference,
)

PLATFORM = Platform("linux", "arm64")
REF = "docker.io/library/alpine:latest"


@pytest.fixture
def serve():
    running = []

    def start(stage, make_reply):
        ctx = Context()
        send_q = queue.Queue()
        recv_q = queue.Queue()
        stage.attach(send_q, recv_q)
        sent = []

        def loop():
            try:
                stage.run(ctx)
            except Cancelled:
                pass

        def responder():
            while not ctx.cancelled():
                try:
                    pkt = send_q.get(timeout=0.01)
                except queue.Empty:
                    continue
                sent.append(pkt)
                recv_q.put(ClientStream(build_id=pkt.build_id, packet=make_reply(pkt)))

        threads = [threading.Thread(target=t, daemon=True) for t in (loop, responder)]
        for t in threads:
            t.start()
        running.append((ctx, threads))
        return sent

    yield start
    for ctx, threads in running:
        ctx.cancel()
        for t in threads:
            t.join(timeout=2)


def test_filter_matching_stage():
    proxy = ResolverProxy()
    packet = ClientStream(packet=ImageTransfer(metadata={"stage": str(proxy)}))
    assert proxy.filter(packet) is None


def test_filter_not_matching_stage():
    proxy = ResolverProxy()
    packet = ClientStream(packet=ImageTransfer(metadata={"stage": "other"}))
    with pytest.raises(IgnorePacket):
        proxy.filter(packet)


def test_filter_non_image_packet():
    with pytest.raises(IgnorePacket):
        ResolverProxy().filter(ClientStream(packet=Command(command="x")))


def test_resolve_image_config_success(serve):
    proxy = ResolverProxy()
    want_digest = "sha256:" + hashlib.sha256(b"dummy").hexdigest()
    sent = serve(
        proxy,
        lambda pkt: ImageTransfer(
            tag=want_digest, metadata={"stage": "resolver"}, data=b'{"config":true}'
        ),
    )
    ref, digest, data = proxy.resolve_image_config(Context(), REF, PLATFORM)
    assert ref == REF
    assert digest == want_digest
    assert data == b'{"config":true}'

    assert len(sent) == 1
    transfer = sent[0].image_transfer
    assert transfer.id == sent[0].build_id
    assert transfer.metadata == {
        "os": "linux",
        "stage": "resolver",
        "method": "/resolve",
        "ref": REF,
        "platform": "linux/arm64",
    }


def test_resolve_image_config_error_metadata(serve):
    proxy = ResolverProxy()
    serve(proxy, lambda pkt: ImageTransfer(metadata={"error": "image not found"}))
    with pytest.raises(ResolveError, match="image not found"):
        proxy.resolve_image_config(Context(), REF, PLATFORM)


def test_resolve_image_config_reply_without_transfer(serve):
    proxy = ResolverProxy()
    serve(proxy, lambda pkt: None)
    with pytest.raises(ResolveError):
        proxy.resolve_image_config(Context(), REF, PLATFORM)


def test_resolve_image_config_invalid_reference():
    with pytest.raises(ReferenceError, match="object required"):
        ResolverProxy().resolve_image_config(Context(), "justarepo", PLATFORM)


def test_parse_reference_with_tag():
    parsed = parse_reference(REF)
    assert parsed == Reference("docker.io/library/alpine", "latest")
    assert parsed.hostname == "docker.io"
    assert str(parsed) == REF


def test_parse_reference_with_digest():
    parsed = parse_reference("docker.io/library/alpine@sha256:abc")
    assert parsed.locator == "docker.io/library/alpine"
    assert parsed.object == "@sha256:abc"
    assert parsed.digest == "sha256:abc"
    assert str(parsed) == "docker.io/library/alpine@sha256:abc"


def test_parse_reference_with_port():
    parsed = parse_reference("localhost:5000/foo:1.0")
    assert parsed == Reference("localhost:5000/foo", "1.0")
    assert parsed.hostname == "localhost:5000"


def test_parse_reference_without_object():
    assert parse_reference("justarepo") == Reference("justarepo", "")


@pytest.mark.parametrize(
    "ref, message",
    [
        ("https://docker.io/alpine:latest", "invalid reference"),
        ("/library/alpine:latest", "hostname required"),
        ("alpine:latest", "invalid port"),
    ],
)
def test_parse_reference_errors(ref, message):
    with pytest.raises(ReferenceError, match=message):
        parse_reference(ref)


@pytest.mark.parametrize(
    "platform, expected",
    [
        (Platform("linux", "amd64"), "linux/amd64"),
        (Platform("linux", "arm", "v7"), "linux/arm/v7"),
        (Platform(""), "unknown"),
    ],
)
def test_platform_format(platform, expected):
    assert platform.format() == expected