import json
import queue
import threading

import pytest

from buildshim.context import Cancelled, Context
from buildshim.demux import Demultiplexer
from buildshim.errors import IgnorePacket, SendStreamBlocked, UninitializedStageError
from buildshim.filters import filter_allow_all, filter_by_build_id
from buildshim.messages import IO, ClientStream, ImageTransfer, ServerStream, StdioType


def _attached_stage():
    stage = __import_stage()
    send_q = queue.Queue()
    recv_q = queue.Queue()
    stage.attach(send_q, recv_q)
    return stage, send_q


def __import_stage():
    from buildshim.stage import BaseStage

    return BaseStage()


def _run_quietly(stage, ctx):
    try:
        stage.run(ctx)
    except Cancelled:
        pass


def _start(stage, ctx):
    runner = threading.Thread(target=_run_quietly, args=(stage, ctx), daemon=True)
    runner.start()
    return runner


def test_base_filter_ignores_everything():
    stage = __import_stage()
    with pytest.raises(IgnorePacket):
        stage.filter(ClientStream(build_id="any"))


def test_send_without_attach_is_uninitialized():
    stage = __import_stage()
    with pytest.raises(UninitializedStageError):
        stage.send(ServerStream())


def test_send_puts_packet_on_queue():
    stage, send_q = _attached_stage()
    pkt = ServerStream(build_id="s")
    stage.send(pkt)
    assert send_q.get_nowait() is pkt


def test_send_blocked_raises():
    stage = __import_stage()
    stage.attach(queue.Queue(maxsize=1), queue.Queue())
    stage.send_timeout = 0.05
    stage.send(ServerStream())
    with pytest.raises(SendStreamBlocked):
        stage.send(ServerStream())


def test_run_raises_cancelled_when_context_done():
    stage, _ = _attached_stage()
    ctx = Context()
    ctx.cancel()
    with pytest.raises(Cancelled):
        stage.run(ctx)


def test_request_round_trip():
    stage, send_q = _attached_stage()
    ctx = Context()
    runner = _start(stage, ctx)

    def responder():
        out = send_q.get(timeout=2)
        stage.process(ClientStream(build_id=out.build_id))

    threading.Thread(target=responder, daemon=True).start()
    request = ServerStream(build_id="req-1", packet=IO(type=StdioType.STDERR, data=b"x"))
    reply = stage.request(ctx, request, "req-1", filter_by_build_id)
    assert reply.build_id == "req-1"
    ctx.cancel()
    runner.join(timeout=2)
    assert not runner.is_alive()


def test_request_with_cancelled_context_raises_after_sending():
    stage, send_q = _attached_stage()
    ctx = Context()
    ctx.cancel()
    pkt = ServerStream(build_id="r")
    with pytest.raises(Cancelled):
        stage.request(ctx, pkt, "r", filter_by_build_id)
    assert send_q.get_nowait() is pkt


def test_request_send_failure_propagates():
    stage = __import_stage()
    with pytest.raises(UninitializedStageError):
        stage.request(Context(), ServerStream(), "id", filter_by_build_id)


def test_registered_demux_receives_dispatched_packet():
    stage, _ = _attached_stage()
    ctx = Context()
    dm = Demultiplexer(ctx, "a", filter_allow_all, lambda _id: None)
    stage.register_demux("a", dm)
    runner = _start(stage, ctx)
    pkt = ClientStream(build_id="a")
    stage.process(pkt)
    assert dm.recv() is pkt
    ctx.cancel()
    runner.join(timeout=2)


def test_recv_filter_waits_for_matching_packet():
    stage, _ = _attached_stage()
    ctx = Context()
    runner = _start(stage, ctx)
    result = {}

    def waiter():
        result["pkt"] = stage.recv_filter(ctx, "w", filter_by_build_id)

    thread = threading.Thread(target=waiter, daemon=True)
    thread.start()
    pkt = ClientStream(build_id="w")
    while "pkt" not in result and thread.is_alive():
        stage.process(pkt)
        thread.join(timeout=0.05)
    assert result["pkt"] is pkt
    ctx.cancel()
    runner.join(timeout=2)


def test_unmatched_packet_metadata_is_printed(capsys):
    stage, _ = _attached_stage()
    ctx = Context()
    metadata = {"stage": "resolver", "method": "/resolve"}
    stage.process(ClientStream(build_id="nobody", packet=ImageTransfer(metadata=metadata)))
    timer = threading.Timer(0.1, ctx.cancel)
    timer.start()
    with pytest.raises(Cancelled):
        stage.run(ctx)
    timer.join()
    assert json.loads(capsys.readouterr().out) == metadata