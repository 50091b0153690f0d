import logging, threading
from enum import Enum
from fastcore.basics import store_attr
from .connection import Channel, Connection, ConnectionConfig
from .dispatch import Action, Dispatcher, ExecutionCounter
from .errors import ProtocolError, TransportError
from .evaluator import Evaluator, IPythonEvaluator
from . import debug as _dbg_mod

log = logging.getLogger("replkernel.kernel")


class ServerState(str, Enum):
    RUNNING = "running"
    STOPPING = "stopping"


class KernelServer:
    def __init__(self, config: ConnectionConfig, evaluator: Evaluator|None=None):
        "Single-threaded polling loop over the five kernel channels."
        store_attr("config,evaluator")
        self.counter = ExecutionCounter()
        self.dispatcher = Dispatcher(config.port_map(), getattr(evaluator, "language_info", None))
        self.stop_event = threading.Event()
        self.ready = threading.Event()
        self.state = ServerState.RUNNING
        self.connection = None

    def request_stop(self):
        "Cancellation token: the loop stops before its next iteration."
        self.stop_event.set()

    def run(self):
        "Bind the channels, serve until shutdown, then close the connection."
        log.info("Starting server: %s", self.config)
        self.state = ServerState.RUNNING
        with Connection(self.config) as conn:
            self.connection = conn
            self.ready.set()
            log.info("start listening")
            try:
                while self.state is ServerState.RUNNING:
                    try:
                        self.poll_once(conn)
                        if not self.stop_event.is_set(): self.stop_event.wait(self.config.poll_interval)
                    except KeyboardInterrupt:
                        log.info("Interrupted")
                        self.request_stop()
                    if self.stop_event.is_set(): self.state = ServerState.STOPPING
            except Exception:
                log.exception("Unhandled error in server loop; shutting down")
                self.state = ServerState.STOPPING
                raise
            finally: self.ready.clear()
        log.info("Shutdown server")

    def poll_once(self, conn: Connection):
        "One iteration: heartbeat, stdin, shell (with evaluator), control (without)."
        try: conn.heartbeat.echo()
        except TransportError as exc: log.warning("heartbeat echo failed: %s", exc)
        self._drain_stdin(conn.stdin)
        for channel, evaluator in ((conn.shell, self.evaluator), (conn.control, None)):
            if self.stop_event.is_set(): return
            self._serve(conn, channel, evaluator)

    def _receive(self, channel: Channel):
        "Next pending message on `channel`, or None when idle or the message had to be dropped."
        try:
            if not channel.poll(): return None
            return channel.receive()
        except ProtocolError as exc: log.warning("Dropping message: %s", exc)
        except TransportError as exc: log.error("%s receive failed: %s", channel.role.value, exc)
        return None

    def _drain_stdin(self, channel: Channel):
        while channel.poll():
            if (msg := self._receive(channel)) is None: return
            log.debug("stdin message dropped: %s id=%s", msg.msg_type, msg.msg_id)

    def _serve(self, conn: Connection, channel: Channel, evaluator: Evaluator|None):
        msg = self._receive(channel)
        if msg is None: return
        _dbg_mod.tlog(log, f"{channel.role.value} handle", msg)
        try: action = self.dispatcher.dispatch(msg, channel, conn.iopub, self.counter, evaluator)
        except TransportError as exc:
            log.error("%s dispatch of %s aborted: %s", channel.role.value, msg.msg_type, exc)
            return
        if action is Action.SHUTDOWN: self.request_stop()


def run_kernel(connection_file:str, evaluator: Evaluator|None=None):
    "Run kernel given a connection file path; ConfigError propagates before any socket is bound."
    config = ConnectionConfig.from_file(connection_file)
    if evaluator is None: evaluator = IPythonEvaluator()
    KernelServer(config, evaluator).run()
