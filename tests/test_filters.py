import pytest

from buildshim.errors import IgnorePacket, UninitializedStageError
from buildshim.filters import (
    FunctionFilter,
    filter_allow_all,
    filter_by_build_id,
    filter_by_build_transfer_id,
    filter_by_command_id,
    filter_by_image_transfer_id,
    filter_chain,
)
from buildshim.messages import BuildTransfer, ClientStream, Command, ImageTransfer


def test_filter_by_build_id():
    build_id = "build-xyz"
    ok_pkt = ClientStream(build_id=build_id)
    bad_pkt = ClientStream(build_id="other")
    f = filter_by_build_id(build_id)
    assert f(ok_pkt) is None
    with pytest.raises(IgnorePacket):
        f(bad_pkt)


def test_filter_chain_stops_on_first_error():
    calls = []

    def fn1(packet):
        calls.append("fn1")
        raise IgnorePacket()

    def fn2(packet):
        calls.append("fn2")

    chain = filter_chain(fn1, fn2)
    with pytest.raises(IgnorePacket):
        chain(ClientStream())
    assert calls == ["fn1"]


def test_filter_chain_runs_all_when_accepted():
    calls = []
    chain = filter_chain(lambda p: calls.append(1), lambda p: calls.append(2))
    chain(ClientStream())
    assert calls == [1, 2]


def test_filter_by_image_transfer_id():
    f = filter_by_image_transfer_id("it")
    assert f(ClientStream(packet=ImageTransfer(id="it"))) is None
    with pytest.raises(IgnorePacket):
        f(ClientStream(packet=ImageTransfer(id="other")))
    with pytest.raises(IgnorePacket):
        f(ClientStream(packet=BuildTransfer(id="it")))


def test_filter_by_build_transfer_id():
    f = filter_by_build_transfer_id("bt")
    assert f(ClientStream(packet=BuildTransfer(id="bt"))) is None
    with pytest.raises(IgnorePacket):
        f(ClientStream())


def test_filter_by_command_id():
    f = filter_by_command_id("cmd")
    assert f(ClientStream(packet=Command(id="cmd"))) is None
    with pytest.raises(IgnorePacket):
        f(ClientStream(packet=Command(id="nope")))


def test_filter_allow_all_accepts_anything():
    assert filter_allow_all(ClientStream(build_id="anything")) is None
    assert FunctionFilter(filter_allow_all).filter(ClientStream()) is None


def test_function_filter_without_function():
    with pytest.raises(UninitializedStageError) as info:
        FunctionFilter(None).filter(ClientStream())
    assert info.value.stage == "filter function"


def test_function_filter_delegates_rejection():
    wrapped = FunctionFilter(filter_by_build_id("a"))
    with pytest.raises(IgnorePacket):
        wrapped.filter(ClientStream(build_id="b"))