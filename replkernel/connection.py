import hashlib, json, logging, os, threading
from dataclasses import dataclass, field
from enum import Enum
from fastcore.basics import store_attr
import zmq
from jupyter_client.session import Session
from .errors import ClosedConnectionError, ConfigError, ProtocolError, TransportError
from .message import Message
from . import debug as _dbg_mod

log = logging.getLogger("replkernel.connection")
close_linger_ms = 1000


class ChannelRole(str, Enum):
    SHELL = "shell"
    CONTROL = "control"
    STDIN = "stdin"
    IOPUB = "iopub"
    HEARTBEAT = "hb"

    @property
    def port_key(self)->str: return f"{self.value}_port"

roles = tuple(ChannelRole)
socket_types = {ChannelRole.SHELL: zmq.ROUTER, ChannelRole.CONTROL: zmq.ROUTER, ChannelRole.STDIN: zmq.ROUTER,
    ChannelRole.IOPUB: zmq.PUB, ChannelRole.HEARTBEAT: zmq.REP}


class Transport(str, Enum):
    TCP = "tcp"
    IPC = "ipc"


def _env_float(name:str, default:float)->float:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


def _port(data: dict, key:str, source:str)->int:
    if key not in data: raise ConfigError(f"Cannot find {key} in {source}")
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, str)): raise ConfigError(f"{key} must be an integer in {source}")
    try: port = int(value)
    except ValueError: raise ConfigError(f"{key} must be an integer in {source}, got {value!r}") from None
    if not 0 < port < 65536: raise ConfigError(f"{key} out of range in {source}: {port}")
    return port


@dataclass(frozen=True)
class ConnectionConfig:
    "Transport, per-role ports and signing parameters for one kernel."
    ports: tuple[int, ...]
    transport: Transport = Transport.TCP
    ip: str = "127.0.0.1"
    signature_scheme: str = "hmac-sha256"
    key: str = field(default="", repr=False)
    poll_interval: float = field(default_factory=lambda: _env_float("REPLKERNEL_POLL_INTERVAL", 0.01))

    def __post_init__(self):
        object.__setattr__(self, "ports", tuple(self.ports))
        if len(self.ports) != len(roles): raise ConfigError(f"expected {len(roles)} ports (one per channel role), got {len(self.ports)}")
        try: object.__setattr__(self, "transport", Transport(self.transport))
        except (ValueError, TypeError): raise ConfigError(f"unsupported transport {self.transport!r}") from None
        scheme = self.signature_scheme
        if not isinstance(scheme, str) or not scheme.startswith("hmac-") or scheme[5:] not in hashlib.algorithms_available:
            raise ConfigError(f"unsupported signature scheme {scheme!r}")
        if self.poll_interval <= 0: raise ConfigError(f"poll_interval must be positive, got {self.poll_interval}")

    @classmethod
    def from_dict(cls, data: dict, source:str="connection info")->"ConnectionConfig":
        "Parse a Jupyter connection-file mapping; raise ConfigError on missing/malformed fields."
        if not isinstance(data, dict): raise ConfigError(f"{source} must be a JSON object")
        ports = tuple(_port(data, role.port_key, source) for role in roles)
        scheme, key = data.get("signature_scheme"), data.get("key")
        if key is not None and not isinstance(key, str): raise ConfigError(f"key must be a string in {source}")
        if not isinstance(data.get("ip") or "", str): raise ConfigError(f"ip must be a string in {source}")
        kw = dict(transport=data.get("transport") or "tcp", ip=data.get("ip") or "127.0.0.1",
            key="" if scheme is None or key is None else key)
        if scheme is not None: kw["signature_scheme"] = scheme
        return cls(ports=ports, **kw)

    @classmethod
    def from_file(cls, path:str)->"ConnectionConfig":
        "Load connection info from JSON connection file at `path`."
        try:
            with open(path, encoding="utf-8") as f: data = json.load(f)
        except OSError as exc: raise ConfigError(f"cannot read connection file {path}: {exc}") from exc
        except json.JSONDecodeError as exc: raise ConfigError(f"invalid JSON in connection file {path}: {exc}") from exc
        return cls.from_dict(data, source=path)

    def port(self, role: ChannelRole)->int: return self.ports[roles.index(ChannelRole(role))]

    def port_map(self)->dict[str, int]: return {role.port_key: self.port(role) for role in roles}

    def addr(self, role: ChannelRole)->str:
        port = self.port(role)
        if self.transport is Transport.IPC: return f"ipc://{self.ip}-{port}"
        return f"tcp://{self.ip}:{port}"

    def make_session(self)->Session:
        "Session that signs/verifies with the configured key; empty key disables signing."
        return Session(key=self.key.encode(), signature_scheme=self.signature_scheme)


class Channel:
    "One message-framed zmq endpoint bound to a channel role."

    def __init__(self, context: zmq.Context, role: ChannelRole, addr:str, session: Session):
        store_attr("role,addr,session")
        self.closed = False
        try:
            self.socket_type = socket_types[role]
            sock = context.socket(self.socket_type)
            sock.linger = 0
            if self.socket_type == zmq.ROUTER and hasattr(zmq, "ROUTER_HANDOVER"): sock.router_handover = 1
        except zmq.ZMQError as exc: raise TransportError(f"cannot create {role.value} socket: {exc}") from exc
        try: sock.bind(addr)
        except zmq.ZMQError as exc:
            sock.close(0)
            raise TransportError(f"cannot bind {role.value} channel to {addr}: {exc}") from exc
        self.sock = sock
        log.debug("%s channel bound to %s", role.value, addr)

    def __repr__(self): return f"<{type(self).__name__} {self.role.value} {self.addr}{' closed' if self.closed else ''}>"

    def _check_open(self):
        if self.closed: raise ClosedConnectionError(f"{self.role.value} channel is closed")

    @property
    def readable(self)->bool: return self.socket_type != zmq.PUB

    def poll(self)->bool:
        "True if a message is queued; never blocks."
        self._check_open()
        if not self.readable: return False
        try: return bool(self.sock.poll(0, zmq.POLLIN))
        except zmq.ZMQError as exc: raise TransportError(f"{self.role.value} poll failed: {exc}") from exc

    def recv_frames(self)->list[bytes]:
        self._check_open()
        try: return self.sock.recv_multipart(zmq.NOBLOCK)
        except zmq.ZMQError as exc: raise TransportError(f"{self.role.value} receive failed: {exc}") from exc

    def receive(self)->Message:
        "Receive, verify and decode one message."
        frames = self.recv_frames()
        try:
            idents, msg_list = self.session.feed_identities(frames)
            data = self.session.deserialize(msg_list, content=True)
        except (ValueError, TypeError, KeyError) as exc:
            raise ProtocolError(f"bad message on {self.role.value}: {exc}") from exc
        msg = Message.from_dict(data, idents)
        _dbg_mod.tlog(log, f"{self.role.value} recv", msg)
        return msg

    def send_frames(self, frames: list):
        self._check_open()
        try: self.sock.send_multipart(frames)
        except zmq.ZMQError as exc: raise TransportError(f"{self.role.value} send failed: {exc}") from exc

    def send(self, msg: Message):
        "Sign and send one message."
        frames = self.session.serialize(msg.to_dict(), ident=msg.idents or None)
        _dbg_mod.tlog(log, f"{self.role.value} send", msg)
        self.send_frames(frames + list(msg.buffers))

    def close(self, linger:int=0):
        if self.closed: return
        self.closed = True
        self.sock.close(linger)


class HeartbeatChannel(Channel):
    "Raw echo endpoint; payloads are never decoded."

    def echo(self)->bool:
        "Send back one pending payload unmodified; return whether anything was echoed."
        if not self.poll(): return False
        self.send_frames(self.recv_frames())
        return True


class IOPubSink:
    "Broadcast sink over the iopub channel; serializes concurrent writers."

    def __init__(self, channel: Channel):
        self.channel = channel
        self.lock = threading.Lock()

    def send(self, msg_type:str, parent: Message, content: dict|None=None, metadata: dict|None=None, **kwargs)->Message:
        "Publish a `msg_type` child message of `parent`."
        if kwargs: content = dict(content or {}) | kwargs
        msg = parent.reply(msg_type, content, metadata, idents=[])
        with self.lock: self.channel.send(msg)
        return msg

    def __getattr__(self, name:str):
        "Return a callable that sends the named iopub message type."
        if name.startswith('_'): raise AttributeError(name)
        def _send(parent: Message, content: dict|None=None, metadata: dict|None=None, **kwargs):
            return self.send(name, parent, content, metadata, **kwargs)

        _send.__name__ = name
        return _send


class Connection:
    "The five kernel channels opened from a ConnectionConfig; closes them all on exit."

    def __init__(self, config: ConnectionConfig, context: zmq.Context|None=None):
        self.config = config
        self.session = config.make_session()
        self.owns_context = context is None
        self.context = zmq.Context() if context is None else context
        self.channels = {}
        self.closed = False
        try:
            for role in roles:
                cls = HeartbeatChannel if role is ChannelRole.HEARTBEAT else Channel
                self.channels[role] = cls(self.context, role, config.addr(role), self.session)
        except BaseException:
            log.error("Failed to bind channels for %s; releasing %d bound", config.ip, len(self.channels))
            self.close(linger=0)
            raise
        self.iopub = IOPubSink(self.channels[ChannelRole.IOPUB])

    def __enter__(self): return self

    def __exit__(self, *exc): self.close()

    def channel(self, role: ChannelRole)->Channel:
        if self.closed: raise ClosedConnectionError("connection is closed")
        return self.channels[ChannelRole(role)]

    @property
    def shell(self)->Channel: return self.channel(ChannelRole.SHELL)

    @property
    def control(self)->Channel: return self.channel(ChannelRole.CONTROL)

    @property
    def stdin(self)->Channel: return self.channel(ChannelRole.STDIN)

    @property
    def heartbeat(self)->HeartbeatChannel: return self.channel(ChannelRole.HEARTBEAT)

    def close(self, linger:int=close_linger_ms):
        "Close every channel (idempotent); pending outbound messages get `linger` ms to flush."
        if self.closed: return
        self.closed = True
        for channel in self.channels.values(): channel.close(linger)
        if self.owns_context: self.context.term()
        log.debug("connection closed")
