from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_desk.model.channel.channel import MediaType


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = Field(..., description="Message typed by the operator")
    media_url: Optional[str] = None
    media_type: Optional[MediaType] = None
    file_name: Optional[str] = None
