from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from agent_desk.model.channel.channel import MediaType, Sender


class _OutboundPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class StartSessionPayload(_OutboundPayload):
    session_id: str
    sector: str


class JoinSessionPayload(_OutboundPayload):
    session_id: str
    agent_name: str
    sector: str
    agent_id: str


class SendMessagePayload(_OutboundPayload):
    session_id: str
    text: str
    sender: Sender = Sender.AGENT
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    file_name: Optional[str] = None


class EndSessionPayload(_OutboundPayload):
    session_id: str
