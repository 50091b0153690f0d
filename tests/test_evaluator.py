import sys
import pytest
from replkernel.connection import IOPubSink
from replkernel.evaluator import Error, Incomplete, IPythonEvaluator, NoRepl, Unit, Value, render
from replkernel.iostream import OutputStream, capture_output
from .kernel_utils import *


@pytest.fixture(scope="module")
def evaluator(): return IPythonEvaluator()


def test_render_outcomes():
    assert render(Value("2")) == "2"
    assert render(Unit()) == "Ok"
    assert render(Error("NameError: x")) == "Error: NameError: x"
    assert render(Incomplete()) == "..."
    assert render(NoRepl()) == "no repl"
    with pytest.raises(TypeError): render("2")


def test_value_and_unit(evaluator):
    assert evaluator.evaluate("1+1") == Value("2")
    assert evaluator.evaluate("answer = 21") == Unit()
    assert evaluator.evaluate("answer * 2") == Value("42")
    assert evaluator.evaluate("answer * 2;") == Unit()


def test_multiline_cell_runs(evaluator):
    assert evaluator.evaluate("total = 0\nfor i in range(4):\n    total += i") == Unit()
    assert evaluator.evaluate("total") == Value("6")


def test_errors(evaluator):
    assert evaluator.evaluate("1/0") == Error("ZeroDivisionError: division by zero")
    result = evaluator.evaluate("undefined_name_xyz")
    assert isinstance(result, Error)
    assert result.message.startswith("NameError")


def test_incomplete_input(evaluator):
    assert evaluator.evaluate("def f():") == Incomplete()
    assert evaluator.evaluate("(1 +") == Incomplete()
    assert evaluator.check_complete("x = 1") == "complete"


def test_language_info(evaluator):
    info = evaluator.language_info
    assert info["name"] == "python"
    assert info["version"].startswith(f"{sys.version_info[0]}.{sys.version_info[1]}")


def test_print_output_is_captured(evaluator):
    channel = RecordingChannel("iopub")
    parent = request("execute_request", dict(code="print('hi')"))
    with capture_output(IOPubSink(channel), parent):
        result = evaluator.evaluate("print('hi'); import sys; print('oops', file=sys.stderr)")
    assert result == Unit()
    assert [m.content for m in channel.sent] == [dict(name="stdout", text="hi\n"), dict(name="stderr", text="oops\n")]
    assert all(m.parent_header == parent.header for m in channel.sent)


def test_output_stream_buffers_partial_lines():
    emitted = []
    stream = OutputStream("stdout", lambda name, text: emitted.append((name, text)))
    assert stream.write("a") == 1
    assert stream.write(b"b\nc\nd") == 5
    assert emitted == [("stdout", "ab\nc\n")]
    stream.flush()
    assert emitted[-1] == ("stdout", "d")
    stream.flush()
    assert len(emitted) == 2
    assert not stream.isatty()
