import logging, threading, traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from . import __version__
from .errors import EvaluationError, TransportError
from .evaluator import Error, Evaluator, Incomplete, NoRepl, Unit, Value, python_language_info, render
from .iostream import capture_output
from .message import Message
from . import debug as _dbg_mod

log = logging.getLogger("replkernel.dispatch")
protocol_version = "5.3"


class MsgType(str, Enum):
    KERNEL_INFO = "kernel_info_request"
    HISTORY = "history_request"
    SHUTDOWN = "shutdown_request"
    CONNECT = "connect_request"
    EXECUTE = "execute_request"
    IS_COMPLETE = "is_complete_request"
    UNSUPPORTED = ""

    @classmethod
    def parse(cls, value:str)->"MsgType":
        try: return cls(value)
        except ValueError: return cls.UNSUPPORTED


class Action(str, Enum):
    CONTINUE = "continue"
    SHUTDOWN = "shutdown"


class ExecutionCounter:
    "Process-wide execution count; starts at 1, get-and-increment under a lock."

    def __init__(self, start:int=1):
        self._value = start
        self._lock = threading.Lock()

    def next(self)->int:
        with self._lock:
            value = self._value
            self._value += 1
            return value

    @property
    def value(self)->int:
        with self._lock: return self._value


@dataclass(frozen=True)
class Request:
    msg: Message
    channel: object
    iopub: object
    counter: ExecutionCounter
    evaluator: Evaluator|None = None

    def reply(self, msg_type:str, content: dict|None=None, metadata: dict|None=None)->Message:
        reply = self.msg.reply(msg_type, content, metadata)
        self.channel.send(reply)
        return reply


def reply_type(msg_type:str)->str: return msg_type.replace("_request", "_reply")


def iso_now()->str: return datetime.now(timezone.utc).isoformat()


def kernel_info_content(language_info: dict|None=None)->dict:
    "Build kernel_info_reply content."
    return dict(status="ok", protocol_version=protocol_version, implementation="replkernel",
        implementation_version=__version__, language_info=language_info or python_language_info(),
        banner="replkernel", help_links=[])


class Dispatcher:
    def __init__(self, ports: dict[str, int], language_info: dict|None=None):
        "Stateless request handler; holds only the port map and kernel-info content."
        self.ports = dict(ports)
        self.kernel_info = kernel_info_content(language_info)
        self.handlers = {MsgType.KERNEL_INFO: self._handle_kernel_info, MsgType.HISTORY: self._handle_history,
            MsgType.SHUTDOWN: self._handle_shutdown, MsgType.CONNECT: self._handle_connect,
            MsgType.EXECUTE: self._handle_execute, MsgType.IS_COMPLETE: self._handle_is_complete,
            MsgType.UNSUPPORTED: self._handle_unsupported}

    def dispatch(self, msg: Message, channel, iopub, counter: ExecutionCounter, evaluator: Evaluator|None=None)->Action:
        "Send the reply/broadcast sequence mandated for `msg`; TransportError propagates."
        req = Request(msg, channel, iopub, counter, evaluator)
        msg_type = MsgType.parse(msg.msg_type)
        _dbg_mod.tlog(log, f"dispatch {msg_type.name}", msg)
        try: return self.handlers[msg_type](req) or Action.CONTINUE
        except TransportError: raise
        except Exception as exc:
            self._handle_internal_error(req, exc)
            return Action.CONTINUE

    def _handle_internal_error(self, req: Request, exc: Exception):
        msg_type = req.msg.msg_type
        log.warning("Internal error in %s handler", msg_type, exc_info=exc)
        tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
        name = reply_type(msg_type) if msg_type.endswith("_request") else "unsupported_message_reply"
        req.reply(name, dict(status="error", ename=type(exc).__name__, evalue=str(exc), traceback=tb))

    def _handle_kernel_info(self, req: Request): req.reply("kernel_info_reply", self.kernel_info)

    def _handle_history(self, req: Request): req.reply("history_reply", dict(status="ok", history=[]))

    def _handle_shutdown(self, req: Request)->Action:
        req.reply("shutdown_reply", req.msg.content)
        log.info("shutdown requested (restart=%s)", bool(req.msg.content.get("restart", False)))
        return Action.SHUTDOWN

    def _handle_connect(self, req: Request): req.reply("connect_reply", self.ports)

    def _handle_is_complete(self, req: Request): req.reply("is_complete_reply", dict(status="complete"))

    def _handle_unsupported(self, req: Request):
        log.info("unsupported message type %r", req.msg.msg_type)
        req.reply("unsupported_message_reply")

    def _evaluate(self, req: Request, code:str):
        if req.evaluator is None: return NoRepl()
        with capture_output(req.iopub, req.msg):
            try: outcome = req.evaluator.evaluate(code)
            except EvaluationError as exc: return Error(str(exc))
            except Exception as exc:
                log.warning("evaluator raised", exc_info=exc)
                return Error(f"{type(exc).__name__}: {exc}")
        if isinstance(outcome, (Value, Unit, Error, Incomplete)): return outcome
        log.warning("evaluator returned %r, not an evaluation result", outcome)
        return Error(f"evaluator returned {outcome!r}")

    def _handle_execute(self, req: Request):
        msg, iopub = req.msg, req.iopub
        code = msg.content.get("code", "")
        if not isinstance(code, str): code = str(code)
        count = req.counter.next()
        started = iso_now()
        iopub.status(msg, execution_state="busy")
        iopub.execute_input(msg, execution_count=count, code=code)
        outcome = self._evaluate(req, code)
        iopub.execute_result(msg, dict(execution_count=count, data={"text/plain": render(outcome)}, metadata={}))
        iopub.status(msg, execution_state="idle")
        req.reply("execute_reply",
            dict(status="ok", execution_count=count, user_variables={}, payload=[], user_expressions={}),
            metadata=dict(dependencies_met=True, engine=msg.session, status="ok", started=started))
