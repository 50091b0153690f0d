import pytest
from .kernel_utils import KernelHarness, RecordingChannel
from replkernel.connection import IOPubSink
from replkernel.dispatch import ExecutionCounter


@pytest.fixture
def kernel_harness():
    with KernelHarness() as h: yield h


@pytest.fixture
def shell(): return RecordingChannel("shell")


@pytest.fixture
def iopub_channel(): return RecordingChannel("iopub")


@pytest.fixture
def iopub(iopub_channel): return IOPubSink(iopub_channel)


@pytest.fixture
def counter(): return ExecutionCounter()
