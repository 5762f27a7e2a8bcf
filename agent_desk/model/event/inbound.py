from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from agent_desk.model.channel.channel import MediaType, Message, Sender


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _InboundPayload(BaseModel):
    # Backends send numeric ids on some events
    model_config = ConfigDict(coerce_numbers_to_str=True, populate_by_name=True, extra="ignore")


class NewMessageEvent(_InboundPayload):
    session_id: Optional[str] = Field(default=None, validation_alias=_alias("sessionId", "session_id", "sessao_id"))
    # Older backends address the conversation by its protocol id only
    legacy_protocol_id: Optional[str] = Field(
        default=None, validation_alias=_alias("legacyProtocolId", "protocolId", "protocolo_id")
    )
    text: str = Field(default="", validation_alias=_alias("text", "mensagem"))
    sender: Sender
    sender_name: Optional[str] = Field(default=None, validation_alias=_alias("senderName", "nome"))
    sector: Optional[str] = Field(default=None, validation_alias=_alias("sector", "setor"))
    media_url: Optional[str] = Field(default=None, validation_alias=_alias("mediaUrl", "media_url"))
    media_type: Optional[MediaType] = Field(default=None, validation_alias=_alias("mediaType", "media_type"))
    file_name: Optional[str] = Field(default=None, validation_alias=_alias("fileName", "file_name"))
    timestamp: Optional[datetime] = None

    @field_validator("sender", mode="before")
    @classmethod
    def _parse_sender(cls, value: Any) -> Sender:
        return Sender.parse(value)

    @property
    def target_key(self) -> Optional[str]:
        return self.session_id or self.legacy_protocol_id or None

    def to_message(self) -> Message:
        return Message(
            sender=self.sender,
            text=self.text,
            sender_name=self.sender_name,
            media_url=self.media_url,
            media_type=self.media_type,
            file_name=self.file_name,
            timestamp=self.timestamp,
        )


class PriorMessage(_InboundPayload):
    id: Optional[str] = None
    content: str = Field(default="", validation_alias=_alias("content", "conteudo"))
    origin: Optional[str] = Field(default=None, validation_alias=_alias("origin", "origem"))
    timestamp: Optional[datetime] = None


class StudentPayload(_InboundPayload):
    id: Optional[str] = None
    name: Optional[str] = Field(default=None, validation_alias=_alias("name", "nome"))
    phone: Optional[str] = Field(default=None, validation_alias=_alias("phone", "telefone"))
    email: Optional[str] = None
    course: Optional[str] = Field(default=None, validation_alias=_alias("course", "curso"))


class AgentPayload(_InboundPayload):
    id: Optional[str] = None
    name: Optional[str] = Field(default=None, validation_alias=_alias("name", "nome"))
    email: Optional[str] = None


class SessionSnapshot(_InboundPayload):
    """One conversation of the openSessions backlog."""

    id: str
    number: Optional[str] = Field(default=None, validation_alias=_alias("number", "numero"))
    status: Optional[str] = None
    subject: Optional[str] = Field(default=None, validation_alias=_alias("subject", "assunto"))
    session_id: Optional[str] = Field(default=None, validation_alias=_alias("sessionId", "session_id", "sessao_id"))
    sector: Optional[str] = Field(default=None, validation_alias=_alias("sector", "setor"))
    created_at: Optional[datetime] = Field(default=None, validation_alias=_alias("createdAt", "data_criacao"))
    student: Optional[StudentPayload] = Field(default=None, validation_alias=_alias("student", "estudante"))
    agent: Optional[AgentPayload] = Field(default=None, validation_alias=_alias("agent", "atendente"))
    prior_messages: List[PriorMessage] = Field(
        default_factory=list, validation_alias=_alias("priorMessages", "mensagens_protocolo")
    )


class AgentJoinedEvent(_InboundPayload):
    session_id: Optional[str] = Field(default=None, validation_alias=_alias("sessionId", "session_id", "sessao_id"))
    agent_name: Optional[str] = Field(default=None, validation_alias=_alias("agentName", "nome"))


class SessionEndedEvent(_InboundPayload):
    session_id: Optional[str] = Field(default=None, validation_alias=_alias("sessionId", "session_id", "sessao_id"))
