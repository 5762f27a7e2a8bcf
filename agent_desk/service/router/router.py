"""Inbound event routing.

Resolves every real-time event to a registry entry and applies the matching
mutation. A new conversation is only ever created from the openSessions
backlog or from the first USER message of an unknown session.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Set, Type, TypeVar

from pydantic import BaseModel, ValidationError

from agent_desk.client.transport.transport import TransportConnector
from agent_desk.model.channel.channel import (
    ChannelDescriptor,
    ChannelStatus,
    Message,
    Sender,
    StudentInfo,
)
from agent_desk.model.event.inbound import (
    AgentJoinedEvent,
    NewMessageEvent,
    PriorMessage,
    SessionEndedEvent,
    SessionSnapshot,
)
from agent_desk.model.event.names import InboundEvent
from agent_desk.service.registry.registry import ChannelRegistry
from agent_desk.service.tasks.queue import DeferredTaskQueue

logger = logging.getLogger(__name__)

NEW_CONVERSATION = "New conversation"

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _history_sender(origin: Optional[str]) -> Sender:
    try:
        return Sender.parse(origin)
    except ValueError:
        return Sender.USER


def _prior_to_message(prior: PriorMessage, fallback: Optional[datetime]) -> Message:
    return Message(
        sender=_history_sender(prior.origin),
        text=prior.content,
        timestamp=prior.timestamp or fallback,
    )


def snapshot_to_descriptor(snapshot: SessionSnapshot) -> ChannelDescriptor:
    history = [_prior_to_message(m, snapshot.created_at) for m in snapshot.prior_messages]
    if history:
        last_message = history[-1].text
    else:
        last_message = snapshot.subject or NEW_CONVERSATION

    student = snapshot.student
    if student is not None and student.name:
        name = student.name
    elif snapshot.number:
        name = f"Protocol {snapshot.number}"
    else:
        name = snapshot.id

    student_info = None
    if student is not None:
        student_info = StudentInfo(
            name=student.name,
            id=student.id,
            course=student.course,
            contact_info=student.phone,
        )

    return ChannelDescriptor(
        id=snapshot.id,
        session_id=snapshot.session_id or snapshot.id,
        status=ChannelStatus.from_protocol(snapshot.status),
        name=name,
        sector=snapshot.sector,
        last_message=last_message,
        last_message_time=snapshot.created_at,
        messages=history,
        student_info=student_info,
    )


class MessageRouter:
    def __init__(self, registry: ChannelRegistry, queue: DeferredTaskQueue) -> None:
        self._registry = registry
        self._queue = queue
        # openSessions ids already applied on the current connection
        self._seen_snapshots: Set[str] = set()
        self._transport: Optional[TransportConnector] = None

    def attach(self, transport: TransportConnector) -> None:
        self._transport = transport
        for event, handler in self._handlers():
            transport.on(event, handler)

    def detach(self) -> None:
        if self._transport is None:
            return
        for event, handler in self._handlers():
            self._transport.off(event, handler)
        self._transport = None

    def reset_snapshot_tracking(self) -> None:
        self._seen_snapshots.clear()

    def _handlers(self):
        return (
            (InboundEvent.OPEN_SESSIONS, self.handle_open_sessions),
            (InboundEvent.NEW_MESSAGE, self.handle_new_message),
            (InboundEvent.NEW_FILE, self.handle_new_file),
            (InboundEvent.AGENT_JOINED, self.handle_agent_joined),
            (InboundEvent.SESSION_ENDED, self.handle_session_ended),
            (InboundEvent.SESSION_WAITING, self.handle_session_waiting),
        )

    # -- messages -------------------------------------------------------

    def handle_new_message(self, payload: Any) -> Optional[str]:
        event = self._parse(NewMessageEvent, payload, InboundEvent.NEW_MESSAGE)
        if event is None:
            return None
        return self.route(event)

    def handle_new_file(self, payload: Any) -> Optional[str]:
        event = self._parse(NewMessageEvent, payload, InboundEvent.NEW_FILE)
        if event is None:
            return None
        if not event.text:
            event = event.model_copy(update={"text": f"File received: {event.file_name or 'unnamed'}"})
        return self.route(event)

    def route(self, event: NewMessageEvent) -> Optional[str]:
        """Apply one inbound message; return the id of the channel it landed on."""
        key = event.target_key
        if not key:
            logger.warning("message without session key dropped sender=%s", event.sender.value)
            return None

        channel = self._registry.get(key)
        if channel is None:
            if event.sender != Sender.USER:
                logger.warning("unroutable %s message dropped key=%s", event.sender.value, key)
                return None
            self._registry.upsert_channel(
                ChannelDescriptor(
                    id=key,
                    session_id=key,
                    status=ChannelStatus.WAITING,
                    name=event.sender_name or f"Session {key}",
                    sector=event.sector,
                )
            )
            logger.info("walk-up conversation created key=%s", key)
        elif event.sender == Sender.USER and channel.is_pending:
            self._registry.promote_to_active(key)

        channel_id = self._registry.append_message(key, event.to_message())
        if channel_id is not None and self._registry.focused_channel_id == channel_id:
            self._queue.schedule(self._registry.mark_read, channel_id)
        return channel_id

    # -- session lifecycle ----------------------------------------------

    def handle_open_sessions(self, payload: Any) -> int:
        if isinstance(payload, dict):
            payload = payload.get("sessions", [])
        if not isinstance(payload, list):
            logger.warning("openSessions payload is not a list type=%s", type(payload).__name__)
            return 0

        applied = 0
        for snapshot in self._parse_many(SessionSnapshot, payload, InboundEvent.OPEN_SESSIONS):
            if snapshot.id in self._seen_snapshots:
                logger.debug("openSessions entry already applied id=%s", snapshot.id)
                continue
            self._seen_snapshots.add(snapshot.id)
            if self._apply_snapshot(snapshot):
                applied += 1
        logger.info("openSessions applied=%s received=%s", applied, len(payload))
        return applied

    def handle_session_waiting(self, payload: Any) -> bool:
        snapshot = self._parse(SessionSnapshot, payload, InboundEvent.SESSION_WAITING)
        if snapshot is None:
            return False
        if self._registry.get(snapshot.id) is not None:
            return False
        return self._apply_snapshot(snapshot)

    def handle_agent_joined(self, payload: Any) -> Optional[str]:
        event = self._parse(AgentJoinedEvent, payload, InboundEvent.AGENT_JOINED)
        if event is None or not event.session_id:
            return None
        text = f"Agent {event.agent_name or 'unknown'} joined the conversation"
        return self._system_notice(event.session_id, text)

    def handle_session_ended(self, payload: Any) -> Optional[str]:
        event = self._parse(SessionEndedEvent, payload, InboundEvent.SESSION_ENDED)
        if event is None or not event.session_id:
            return None
        return self._system_notice(event.session_id, "Session ended")

    def _apply_snapshot(self, snapshot: SessionSnapshot) -> bool:
        descriptor = snapshot_to_descriptor(snapshot)
        if descriptor.status == ChannelStatus.CLOSED:
            logger.debug("closed session skipped id=%s", snapshot.id)
            return False
        self._registry.upsert_channel(descriptor)
        return True

    def _system_notice(self, key: str, text: str) -> Optional[str]:
        channel_id = self._registry.append_message(key, Message(sender=Sender.SYSTEM, text=text))
        if channel_id is None:
            logger.debug("notice for unknown session dropped key=%s", key)
        return channel_id

    # -- parsing --------------------------------------------------------

    @staticmethod
    def _parse(model: Type[PayloadT], payload: Any, event: InboundEvent) -> Optional[PayloadT]:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning("malformed %s payload dropped errors=%s", event.value, exc.error_count())
            logger.debug("malformed %s payload detail: %s", event.value, exc)
            return None

    @classmethod
    def _parse_many(cls, model: Type[PayloadT], items: Iterable[Any], event: InboundEvent) -> List[PayloadT]:
        parsed = []
        for item in items:
            value = cls._parse(model, item, event)
            if value is not None:
                parsed.append(value)
        return parsed
