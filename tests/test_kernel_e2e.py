import threading
import pytest
import zmq
from jupyter_client.session import Session
from replkernel.connection import ChannelRole
from replkernel.errors import ClosedConnectionError
from replkernel.evaluator import Value
from replkernel.kernel import KernelServer, ServerState
from .kernel_utils import *


def test_execute_on_shell(kernel_harness):
    kc = kernel_harness.kc
    msg_id, reply, outputs = kc.exec_drain("1+1")
    assert reply["msg_type"] == "execute_reply"
    assert reply["content"]["status"] == "ok"
    assert reply["content"]["execution_count"] == 1
    assert reply["metadata"]["engine"] == kc.session.session
    assert msg_types(outputs) == ["status", "execute_input", "execute_result", "status"]
    assert outputs[0]["content"]["execution_state"] == "busy"
    assert outputs[1]["content"] == dict(execution_count=1, code="1+1")
    assert outputs[2]["content"]["data"] == {"text/plain": "2"}
    assert outputs[3]["content"]["execution_state"] == "idle"


def test_control_execute_has_no_repl_and_shares_counter(kernel_harness):
    kc = kernel_harness.kc
    _, first, _ = kc.exec_drain("1+1")
    _, ctl, outputs = kc.exec_drain("1+1", channel="control")
    _, last, _ = kc.exec_drain("x = 1")
    assert [first["content"]["execution_count"], ctl["content"]["execution_count"], last["content"]["execution_count"]] == [1, 2, 3]
    assert outputs[2]["content"]["data"] == {"text/plain": "no repl"}
    assert kernel_harness.evaluator.codes == ["1+1", "x = 1"]


def test_kernel_info_and_is_complete(kernel_harness):
    kc = kernel_harness.kc
    info = kc.shell_reply(kc.kernel_info())
    assert info["msg_type"] == "kernel_info_reply"
    assert info["content"]["protocol_version"] == "5.3"
    complete = kc.shell_reply(kc.is_complete("for i in"))
    assert complete["msg_type"] == "is_complete_reply"
    assert complete["content"] == {"status": "complete"}
    history = kc.shell_reply(kc.history(hist_access_type="tail", n=5))
    assert history["content"]["history"] == []


def test_connect_request_reports_ports(kernel_harness):
    kc = kernel_harness.kc
    reply = kc.shell_reply(kc.send_on("shell", "connect_request"))
    assert reply["msg_type"] == "connect_reply"
    assert reply["content"] == kernel_harness.config.port_map()


def test_unsupported_message(kernel_harness):
    kc = kernel_harness.kc
    reply = kc.control_reply(kc.send_on("control", "interrupt_request"))
    assert reply["msg_type"] == "unsupported_message_reply"
    assert reply["content"] == {}
    _, after, _ = kc.exec_drain("1+1")
    assert after["content"]["execution_count"] == 1


def test_bad_signature_dropped(kernel_harness):
    config = kernel_harness.config
    ctx = zmq.Context.instance()
    sock = ctx.socket(zmq.DEALER)
    sock.linger = 0
    sock.connect(config.addr(ChannelRole.SHELL))
    try:
        Session(key=b"not-the-key").send(sock, "kernel_info_request", {})
        assert not sock.poll(300)
    finally: sock.close(0)
    kc = kernel_harness.kc
    assert kc.shell_reply(kc.kernel_info())["msg_type"] == "kernel_info_reply"


def test_heartbeat_echo(kernel_harness):
    ctx = zmq.Context.instance()
    sock = ctx.socket(zmq.REQ)
    sock.linger = 0
    sock.connect(kernel_harness.config.addr(ChannelRole.HEARTBEAT))
    try:
        sock.send(b"ping")
        assert sock.poll(TIMEOUT * 1000)
        assert sock.recv() == b"ping"
    finally: sock.close(0)


@pytest.mark.parametrize("channel", ["shell", "control"])
def test_shutdown_replies_then_stops(channel):
    with KernelHarness() as h:
        kc = h.kc
        content = dict(restart=False)
        msg_id = kc.send_on(channel, "shutdown_request", content)
        reply = (kc.control_reply if channel == "control" else kc.shell_reply)(msg_id)
        assert reply["msg_type"] == "shutdown_reply"
        assert reply["content"] == content
        h.thread.join(TIMEOUT)
        assert not h.thread.is_alive()
        assert h.server.state is ServerState.STOPPING
        assert h.server.connection.closed
        with pytest.raises(ClosedConnectionError): h.server.connection.shell


def test_request_stop_ends_loop():
    server = KernelServer(make_config(), None)
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    assert server.ready.wait(TIMEOUT)
    server.request_stop()
    thread.join(TIMEOUT)
    assert not thread.is_alive()
    assert server.connection.closed


def test_custom_evaluator_values():
    with KernelHarness(ScriptedEvaluator({"[1, 2]": Value("[1, 2]")})) as h:
        _, reply, outputs = h.kc.exec_drain("[1, 2]")
        assert outputs[2]["content"]["data"]["text/plain"] == "[1, 2]"
        assert reply["content"]["status"] == "ok"
