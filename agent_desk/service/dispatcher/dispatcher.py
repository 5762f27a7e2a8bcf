"""Operator intents: attend, close, send.

Every action mutates the registry first (optimistic) and then emits the
outbound event. Emits are fire-and-forget; nothing is rolled back when the
transport fails.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from agent_desk.client.media.media import MediaClient
from agent_desk.client.transport.transport import TransportConnector
from agent_desk.errors import DeskError, MissingIdentifierError
from agent_desk.model.channel.channel import ChannelDescriptor, MediaType, Message, Sender
from agent_desk.model.event.names import OutboundEvent
from agent_desk.model.event.outbound import (
    EndSessionPayload,
    JoinSessionPayload,
    SendMessagePayload,
    StartSessionPayload,
)
from agent_desk.service.registry.registry import ChannelRegistry
from agent_desk.service.tasks.queue import DeferredTaskQueue

logger = logging.getLogger(__name__)


class Operator(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    sector: str
    agent_id: str


class SessionActionDispatcher:
    def __init__(
        self,
        registry: ChannelRegistry,
        transport: TransportConnector,
        queue: DeferredTaskQueue,
        operator: Operator,
        media: Optional[MediaClient] = None,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self._queue = queue
        self._operator = operator
        self._media = media

    @property
    def operator(self) -> Operator:
        return self._operator

    def attend(self, key: str) -> bool:
        if not key:
            raise MissingIdentifierError("attend")
        channel = self._registry.find_pending(key)
        if channel is None:
            logger.warning("attend ignored, no pending channel key=%s", key)
            return False

        self._registry.promote_to_active(channel.id)
        self._transport.emit(
            OutboundEvent.JOIN_SESSION,
            JoinSessionPayload(
                session_id=channel.session_id,
                agent_name=self._operator.name,
                sector=self._operator.sector,
                agent_id=self._operator.agent_id,
            ).to_wire(),
        )
        self._transport.attach_session(channel.session_id)
        self._registry.focus_channel(channel.id)
        self._queue.schedule(self._registry.mark_read, channel.id)
        logger.info("attending id=%s session_id=%s agent=%s", channel.id, channel.session_id, self._operator.agent_id)
        return True

    def close(self, key: str) -> bool:
        if not key:
            raise MissingIdentifierError("close")
        channel = self._registry.get(key)
        if channel is None:
            logger.warning("close ignored, unknown channel key=%s", key)
            return False

        self._transport.emit(OutboundEvent.END_SESSION, EndSessionPayload(session_id=channel.session_id).to_wire())
        self._transport.detach_session(channel.session_id)
        self._registry.remove_channel(channel.id)
        logger.info("closed id=%s session_id=%s", channel.id, channel.session_id)
        return True

    def send(
        self,
        key: str,
        text: str,
        media_url: Optional[str] = None,
        media_type: Optional[MediaType] = None,
        file_name: Optional[str] = None,
    ) -> bool:
        if not key:
            raise MissingIdentifierError("send")
        if not (text or "").strip() and not media_url:
            return False
        return self._send(key, text or "", media_url, media_type, file_name, OutboundEvent.SEND_MESSAGE)

    async def send_file(
        self,
        key: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        caption: str = "",
    ) -> bool:
        if not key:
            raise MissingIdentifierError("send_file")
        if self._media is None:
            raise DeskError("send_file needs a media client")
        channel = self._registry.get(key)
        if channel is None:
            logger.warning("send_file ignored, unknown channel key=%s", key)
            return False

        media_url = await self._media.upload(channel.id, filename, content, content_type, caption)
        if not media_url:
            return False
        # The channel may have been closed while the upload was running
        return self._send(
            channel.id,
            caption,
            media_url,
            MediaType.from_content_type(content_type),
            filename,
            OutboundEvent.SEND_FILE,
        )

    def select(self, key: str) -> bool:
        if not key:
            raise MissingIdentifierError("select")
        if not self._registry.focus_channel(key):
            logger.warning("select ignored, no active channel key=%s", key)
            return False
        channel_id = self._registry.focused_channel_id
        self._queue.schedule(self._registry.mark_read, channel_id)
        return True

    def start_session(self, session_id: str, sector: Optional[str] = None) -> None:
        if not session_id:
            raise MissingIdentifierError("start_session", "session_id")
        self._transport.emit(
            OutboundEvent.START_SESSION,
            StartSessionPayload(session_id=session_id, sector=sector or self._operator.sector).to_wire(),
        )
        self._transport.attach_session(session_id)

    def list_open_sessions(self) -> None:
        self._transport.emit(OutboundEvent.LIST_OPEN_SESSIONS, {})

    async def load_history(self, key: str) -> int:
        """Refresh a channel's history from the REST backend; return the number of messages loaded."""
        if self._media is None:
            raise DeskError("load_history needs a media client")
        channel = self._registry.get(key)
        if channel is None:
            logger.warning("load_history ignored, unknown channel key=%s", key)
            return 0
        history = await self._media.fetch_history(channel.id)
        if history:
            self._registry.upsert_channel(ChannelDescriptor(id=channel.id, messages=history))
        return len(history)

    def _send(
        self,
        key: str,
        text: str,
        media_url: Optional[str],
        media_type: Optional[MediaType],
        file_name: Optional[str],
        event: OutboundEvent,
    ) -> bool:
        channel = self._registry.get(key)
        if channel is None:
            logger.warning("send ignored, unknown channel key=%s", key)
            return False
        if channel.is_pending:
            # Sending implies attending
            self.attend(channel.id)

        self._registry.append_message(
            channel.id,
            Message(
                sender=Sender.AGENT,
                text=text,
                sender_name=self._operator.name,
                media_url=media_url,
                media_type=media_type,
                file_name=file_name,
            ),
        )
        self._transport.emit(
            event,
            SendMessagePayload(
                session_id=channel.session_id,
                text=text,
                sender=Sender.AGENT,
                media_url=media_url,
                media_type=media_type,
                file_name=file_name,
            ).to_wire(),
        )
        return True
