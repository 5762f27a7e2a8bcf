from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_desk.model.event.names import ConnectionState


class Sender(str, Enum):
    USER = "USER"
    AGENT = "AGENT"
    SYSTEM = "SYSTEM"

    @classmethod
    def parse(cls, value: Any) -> "Sender":
        """Accept enum members, current wire values and legacy ones (usuario/atendente/sistema)."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        try:
            return _SENDER_ALIASES[key]
        except KeyError:
            raise ValueError(f"unknown sender: {value!r}") from None


_SENDER_ALIASES = {
    "USER": Sender.USER,
    "USUARIO": Sender.USER,
    "AGENT": Sender.AGENT,
    "ATENDENTE": Sender.AGENT,
    "SYSTEM": Sender.SYSTEM,
    "SISTEMA": Sender.SYSTEM,
}


class ChannelStatus(str, Enum):
    WAITING = "WAITING"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"

    @classmethod
    def parse(cls, value: Any, default: Optional["ChannelStatus"] = None) -> "ChannelStatus":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().upper()
        status = _STATUS_ALIASES.get(key, default)
        if status is None:
            raise ValueError(f"unknown channel status: {value!r}")
        return status

    @classmethod
    def from_protocol(cls, value: Any) -> "ChannelStatus":
        """Backend protocol status; anything unrecognised is still waiting for an agent."""
        return cls.parse(value, default=cls.WAITING)


_STATUS_ALIASES = {
    "WAITING": ChannelStatus.WAITING,
    "AGUARDANDO": ChannelStatus.WAITING,
    "ABERTO": ChannelStatus.WAITING,
    "OPEN": ChannelStatus.WAITING,
    "IN_PROGRESS": ChannelStatus.IN_PROGRESS,
    "EM_ATENDIMENTO": ChannelStatus.IN_PROGRESS,
    "CLOSED": ChannelStatus.CLOSED,
    "ENCERRADO": ChannelStatus.CLOSED,
    "FECHADO": ChannelStatus.CLOSED,
    "CANCELADO": ChannelStatus.CLOSED,
    "CANCELLED": ChannelStatus.CLOSED,
}


class MediaType(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"

    @classmethod
    def from_content_type(cls, content_type: Optional[str]) -> "MediaType":
        ct = (content_type or "").lower()
        if ct.startswith("image/"):
            return cls.IMAGE
        if ct.startswith("video/"):
            return cls.VIDEO
        if ct.startswith("audio/"):
            return cls.AUDIO
        return cls.DOCUMENT


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Sender
    text: str = ""
    sender_name: Optional[str] = None
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    file_name: Optional[str] = None
    # Filled with the insertion time by the registry when absent
    timestamp: Optional[datetime] = None

    @field_validator("sender", mode="before")
    @classmethod
    def _parse_sender(cls, value: Any) -> Sender:
        return Sender.parse(value)


class StudentInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    id: Optional[str] = None
    course: Optional[str] = None
    contact_info: Optional[str] = None


class Channel(BaseModel):
    id: str
    # Real-time session key; may differ from id
    session_id: str
    status: ChannelStatus = ChannelStatus.WAITING
    name: str
    sector: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    unread_count: int = Field(default=0, ge=0)
    messages: List[Message] = Field(default_factory=list)
    is_focused: bool = False
    student_info: Optional[StudentInfo] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ChannelStatus.WAITING


class ChannelDescriptor(BaseModel):
    """Input of ChannelRegistry.upsert_channel; only explicitly set fields are merged."""

    id: str
    session_id: Optional[str] = None
    status: Optional[ChannelStatus] = None
    name: Optional[str] = None
    sector: Optional[str] = None
    last_message: Optional[str] = None
    last_message_time: Optional[datetime] = None
    messages: Optional[List[Message]] = None
    student_info: Optional[StudentInfo] = None

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Optional[ChannelStatus]:
        if value is None:
            return None
        return ChannelStatus.parse(value)


class RegistrySnapshot(BaseModel):
    pending: List[Channel] = Field(default_factory=list)
    active: List[Channel] = Field(default_factory=list)
    focused_channel_id: Optional[str] = None
    version: int = 0


class DeskSnapshot(RegistrySnapshot):
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
