"Evaluation capability consumed by the dispatcher, and an IPython-backed implementation."
import logging, sys
from dataclasses import dataclass
from typing import Protocol, Union
from IPython.core.displayhook import DisplayHook
from IPython.core.interactiveshell import InteractiveShell
from traitlets.config import Config
from .errors import EvaluationError

log = logging.getLogger("replkernel.evaluator")


@dataclass(frozen=True)
class Value:
    text: str

@dataclass(frozen=True)
class Unit: pass

@dataclass(frozen=True)
class Error:
    message: str

@dataclass(frozen=True)
class Incomplete: pass

@dataclass(frozen=True)
class NoRepl:
    "No evaluator attached to the channel."

EvalResult = Union[Value, Unit, Error, Incomplete]
ExecOutcome = Union[Value, Unit, Error, Incomplete, NoRepl]


def render(outcome: ExecOutcome)->str:
    "Plain-text rendering published in `execute_result`."
    if isinstance(outcome, Value): return outcome.text
    if isinstance(outcome, Unit): return "Ok"
    if isinstance(outcome, Error): return f"Error: {outcome.message}"
    if isinstance(outcome, Incomplete): return "..."
    if isinstance(outcome, NoRepl): return "no repl"
    raise TypeError(f"not an execution outcome: {outcome!r}")


def python_language_info()->dict:
    "kernel_info `language_info` for the running interpreter."
    return dict(name="python", version=".".join(str(x) for x in sys.version_info[:3]), mimetype="text/x-python",
        file_extension=".py", pygments_lexer="python", codemirror_mode={"name": "ipython", "version": 3},
        nbconvert_exporter="python")


class Evaluator(Protocol):
    def evaluate(self, code:str)->EvalResult: ...


class CaptureDisplayHook(DisplayHook):
    def __init__(self, shell=None):
        "DisplayHook that keeps the last formatted result instead of printing it."
        super().__init__(shell=shell)
        self.last = None

    def write_output_prompt(self): pass

    def write_format_data(self, format_dict, md_dict=None): self.last = format_dict

    def finish_displayhook(self): self._is_active = False


class IPythonEvaluator:
    def __init__(self, user_ns: dict|None=None):
        "Private IPython shell with history disabled and result/traceback capture."
        c = Config()
        c.HistoryManager.enabled = False
        self.shell = InteractiveShell(config=c, user_ns=user_ns)
        self.shell.displayhook = CaptureDisplayHook(shell=self.shell)
        self.shell.display_trap.hook = self.shell.displayhook
        self.last_traceback = None

        def _showtraceback(etype, evalue, stb): self.last_traceback = stb
        self.shell._showtraceback = _showtraceback

    @property
    def language_info(self)->dict: return python_language_info()

    def check_complete(self, code:str)->str:
        "IPython's completeness verdict for a full cell: complete, incomplete or invalid."
        status, _indent = self.shell.input_transformer_manager.check_complete(code + "\n")
        return status

    def evaluate(self, code:str)->EvalResult:
        "Run `code`; classify into Value, Unit, Error or Incomplete."
        if self.check_complete(code) == "incomplete": return Incomplete()
        self.shell.displayhook.last = None
        self.last_traceback = None
        try: result = self.shell.run_cell(code, store_history=False, silent=False)
        except Exception as exc: raise EvaluationError(f"{type(exc).__name__}: {exc}") from exc
        err = result.error_in_exec or result.error_before_exec
        if err is not None:
            log.debug("evaluation failed: %r", err)
            return Error(f"{type(err).__name__}: {err}")
        data = self.shell.displayhook.last
        if data is None: return Unit()
        return Value(data.get("text/plain", ""))
