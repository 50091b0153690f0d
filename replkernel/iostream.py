"Forward stdout/stderr written during an evaluation as iopub `stream` broadcasts."
from contextlib import contextmanager, redirect_stderr, redirect_stdout
from typing import Callable


class OutputStream:
    def __init__(self, name:str, sink: Callable[[str, str], None]):
        "Line-buffered text stream that emits complete lines to `sink(name, text)`."
        self.name = name
        self._sink = sink
        self._buffer = ""

    def write(self, value)->int:
        "Buffer text and emit every complete line."
        if value is None: return 0
        if isinstance(value, bytes): text = value.decode(errors="replace")
        elif isinstance(value, str): text = value
        else: text = str(value)
        if not text: return 0
        self._buffer += text
        if "\n" in self._buffer:
            head, _, self._buffer = self._buffer.rpartition("\n")
            self._sink(self.name, head + "\n")
        return len(text)

    def writelines(self, lines)->int:
        total = 0
        for line in lines: total += self.write(line) or 0
        return total

    def flush(self):
        "Emit any pending partial line."
        if self._buffer:
            text, self._buffer = self._buffer, ""
            self._sink(self.name, text)

    def isatty(self)->bool: return False

    def writable(self)->bool: return True


@contextmanager
def capture_output(iopub, parent):
    "Redirect stdout/stderr to `stream` broadcasts parented on `parent`; flushes on exit."
    def sink(name:str, text:str): iopub.stream(parent, name=name, text=text)
    out, err = OutputStream("stdout", sink), OutputStream("stderr", sink)
    try:
        with redirect_stdout(out), redirect_stderr(err): yield out, err
    finally:
        out.flush()
        err.flush()
