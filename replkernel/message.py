"Wire message model shared by channels and the dispatcher."
from dataclasses import dataclass, field
from typing import Any
from jupyter_client.session import msg_header, new_id
from .errors import ProtocolError


@dataclass
class Message:
    header: dict
    parent_header: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    content: dict = field(default_factory=dict)
    idents: list[bytes] = field(default_factory=list)
    buffers: list = field(default_factory=list)

    @property
    def msg_type(self)->str: return self.header.get("msg_type", "")

    @property
    def msg_id(self)->str: return self.header.get("msg_id", "")

    @property
    def session(self)->str: return self.header.get("session", "")

    @classmethod
    def new(cls, msg_type:str, content: dict|None=None, *, session:str="", username:str="kernel",
        parent: "Message|None"=None, metadata: dict|None=None, idents: list[bytes]|None=None)->"Message":
        "Build a fresh message with a new msg_id, optionally as a child of `parent`."
        header = msg_header(new_id(), msg_type, username, session)
        parent_header = dict(parent.header) if parent is not None else {}
        return cls(header=header, parent_header=parent_header, metadata=dict(metadata or {}),
            content=dict(content or {}), idents=list(idents or []))

    def reply(self, msg_type:str, content: dict|None=None, metadata: dict|None=None,
        idents: list[bytes]|None=None)->"Message":
        "Child of this message carrying its session; routed back to the sender unless `idents` is given."
        return Message.new(msg_type, content, session=self.session, username=self.header.get("username", "kernel"),
            parent=self, metadata=metadata, idents=self.idents if idents is None else idents)

    def to_dict(self)->dict[str, Any]:
        "Dict form accepted by `Session.serialize`."
        return dict(header=self.header, msg_id=self.msg_id, msg_type=self.msg_type, parent_header=self.parent_header,
            metadata=self.metadata, content=self.content, buffers=self.buffers)

    @classmethod
    def from_dict(cls, data: dict, idents: list[bytes]|None=None)->"Message":
        "Build from a deserialized dict; raise ProtocolError when the header is unusable."
        header = data.get("header")
        if not isinstance(header, dict) or not header.get("msg_type"): raise ProtocolError("message header missing msg_type")
        content = data.get("content")
        if content is None: content = {}
        if not isinstance(content, dict): raise ProtocolError(f"content of {header['msg_type']} is not a mapping")
        return cls(header=header, parent_header=data.get("parent_header") or {}, metadata=data.get("metadata") or {},
            content=content, idents=list(idents or []), buffers=list(data.get("buffers") or []))
