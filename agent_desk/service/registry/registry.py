import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from agent_desk.errors import MissingIdentifierError
from agent_desk.model.channel.channel import (
    Channel,
    ChannelDescriptor,
    ChannelStatus,
    Message,
    RegistrySnapshot,
    Sender,
)

logger = logging.getLogger(__name__)

_MERGED_FIELDS = ("session_id", "name", "sector", "last_message", "last_message_time")
# Fields a descriptor may not blank out once set
_REQUIRED_FIELDS = {"session_id", "name"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(message: Message, when: Optional[datetime] = None) -> Message:
    if message.timestamp is not None:
        return message
    return message.model_copy(update={"timestamp": when or _now()})


class ChannelRegistry:
    """In-memory store of every known conversation.

    Channels live in one of two insertion-ordered sets: pending (waiting for
    an agent) and active (assigned to this operator). At most one active
    channel is focused. Any key argument may be a channel id or a session id;
    resolution checks the active set before the pending set and, when the two
    keys point at different channels, trusts the session id.

    Lookup misses are no-ops. The registry is a best-effort cache over an
    eventually consistent stream, so only a missing identifier raises.
    """

    def __init__(self) -> None:
        self._pending: Dict[str, Channel] = {}
        self._active: Dict[str, Channel] = {}
        self._focused_id: Optional[str] = None
        self._version = 0

    # -- readers --------------------------------------------------------

    @property
    def focused_channel_id(self) -> Optional[str]:
        return self._focused_id

    @property
    def version(self) -> int:
        return self._version

    def get(self, key: str) -> Optional[Channel]:
        channel = self._resolve(key)
        return channel.model_copy(deep=True) if channel is not None else None

    def find_pending(self, key: str) -> Optional[Channel]:
        channel = self._resolve(key)
        if channel is None or not self._is_pending(channel):
            return None
        return channel.model_copy(deep=True)

    def find_active(self, key: str) -> Optional[Channel]:
        channel = self._resolve(key)
        if channel is None or self._is_pending(channel):
            return None
        return channel.model_copy(deep=True)

    def pending_channels(self) -> List[Channel]:
        return [c.model_copy(deep=True) for c in self._pending.values()]

    def active_channels(self) -> List[Channel]:
        return [c.model_copy(deep=True) for c in self._active.values()]

    def snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            pending=self.pending_channels(),
            active=self.active_channels(),
            focused_channel_id=self._focused_id,
            version=self._version,
        )

    # -- mutations ------------------------------------------------------

    def upsert_channel(self, descriptor: Union[ChannelDescriptor, Mapping[str, Any]]) -> Channel:
        if not isinstance(descriptor, ChannelDescriptor):
            descriptor = ChannelDescriptor.model_validate(descriptor)
        self._require(descriptor.id, "upsert_channel")

        existing = self._pending.get(descriptor.id) or self._active.get(descriptor.id)
        if existing is None:
            channel = self._create(descriptor)
            return channel.model_copy(deep=True)

        changed = self._merge(existing, descriptor)
        if changed:
            self._bump()
        return existing.model_copy(deep=True)

    def remove_channel(self, key: str) -> Optional[Channel]:
        self._require(key, "remove_channel")
        channel = self._resolve(key)
        if channel is None:
            logger.debug("remove_channel miss key=%s", key)
            return None

        self._store_of(channel).pop(channel.id, None)
        channel.is_focused = False
        if self._focused_id == channel.id:
            self._focused_id = None
            self._ensure_focus()
        self._bump()
        logger.info("channel removed id=%s session_id=%s", channel.id, channel.session_id)
        return channel.model_copy(deep=True)

    def focus_channel(self, key: str) -> bool:
        self._require(key, "focus_channel")
        channel = self._resolve(key)
        if channel is None or self._is_pending(channel):
            logger.debug("focus_channel miss key=%s", key)
            return False
        if self._focused_id != channel.id:
            self._set_focus(channel.id)
            self._bump()
        return True

    def append_message(self, key: str, message: Union[Message, Mapping[str, Any]]) -> Optional[str]:
        """Append to the channel matching key; return its id, or None when nothing matches."""
        self._require(key, "append_message")
        if not isinstance(message, Message):
            message = Message.model_validate(message)

        channel = self._resolve(key)
        if channel is None:
            logger.debug("append_message miss key=%s", key)
            return None

        message = _stamp(message)
        channel.messages.append(message)
        channel.last_message = message.text
        channel.last_message_time = message.timestamp
        if not channel.is_focused and message.sender != Sender.SYSTEM:
            channel.unread_count += 1
        self._bump()
        return channel.id

    def mark_read(self, key: str) -> bool:
        self._require(key, "mark_read")
        channel = self._resolve(key)
        if channel is None or self._is_pending(channel):
            logger.debug("mark_read miss key=%s", key)
            return False
        if channel.unread_count:
            channel.unread_count = 0
            self._bump()
        return True

    def promote_to_active(self, key: str) -> bool:
        self._require(key, "promote_to_active")
        channel = self._resolve(key)
        if channel is None:
            logger.debug("promote_to_active miss key=%s", key)
            return False

        if self._is_pending(channel):
            del self._pending[channel.id]
            self._active[channel.id] = channel
        else:
            logger.info("duplicate promotion merged id=%s", channel.id)

        channel.status = ChannelStatus.IN_PROGRESS
        channel.unread_count = 0
        self._set_focus(channel.id)
        self._bump()
        logger.info("channel promoted id=%s session_id=%s", channel.id, channel.session_id)
        return True

    # -- internals ------------------------------------------------------

    @staticmethod
    def _require(value: Optional[str], operation: str) -> None:
        if not value:
            raise MissingIdentifierError(operation)

    def _bump(self) -> None:
        self._version += 1

    def _is_pending(self, channel: Channel) -> bool:
        return self._pending.get(channel.id) is channel

    def _store_of(self, channel: Channel) -> Dict[str, Channel]:
        return self._pending if self._is_pending(channel) else self._active

    def _by_session(self, session_id: str) -> Optional[Channel]:
        for store in (self._active, self._pending):
            for channel in store.values():
                if channel.session_id == session_id:
                    return channel
        return None

    def _resolve(self, key: Optional[str]) -> Optional[Channel]:
        if not key:
            return None
        by_id = self._active.get(key) or self._pending.get(key)
        by_session = self._by_session(key)
        if by_id is not None and by_session is not None and by_id is not by_session:
            logger.warning(
                "dual-key conflict key=%s id_match=%s session_match=%s; routing by session id",
                key,
                by_id.id,
                by_session.id,
            )
            return by_session
        return by_id or by_session

    def _set_focus(self, channel_id: Optional[str]) -> None:
        for channel in self._active.values():
            channel.is_focused = channel.id == channel_id
        for channel in self._pending.values():
            channel.is_focused = False
        self._focused_id = channel_id

    def _hand_over_focus(self, channel_id: Optional[str]) -> None:
        # Focus moved without an operator action starts read
        self._set_focus(channel_id)
        if channel_id is not None:
            self._active[channel_id].unread_count = 0

    def _ensure_focus(self) -> None:
        if self._focused_id in self._active:
            return
        self._hand_over_focus(next(iter(self._active), None))

    def _create(self, descriptor: ChannelDescriptor) -> Channel:
        messages = [_stamp(m) for m in descriptor.messages or []]
        last = messages[-1] if messages else None
        channel = Channel(
            id=descriptor.id,
            session_id=descriptor.session_id or descriptor.id,
            status=descriptor.status or ChannelStatus.WAITING,
            name=descriptor.name or descriptor.id,
            sector=descriptor.sector,
            last_message=descriptor.last_message if descriptor.last_message is not None else (last.text if last else None),
            last_message_time=descriptor.last_message_time or (last.timestamp if last else None),
            messages=messages,
            student_info=descriptor.student_info,
        )
        if channel.status == ChannelStatus.WAITING:
            self._pending[channel.id] = channel
        else:
            self._active[channel.id] = channel
            if self._focused_id is None:
                self._hand_over_focus(channel.id)
        self._bump()
        logger.info("channel added id=%s session_id=%s status=%s", channel.id, channel.session_id, channel.status.value)
        return channel

    def _merge(self, channel: Channel, descriptor: ChannelDescriptor) -> bool:
        provided = descriptor.model_fields_set
        changed = False

        for field in _MERGED_FIELDS:
            if field not in provided:
                continue
            value = getattr(descriptor, field)
            if value is None and field in _REQUIRED_FIELDS:
                continue
            if getattr(channel, field) != value:
                setattr(channel, field, value)
                changed = True

        # Contact metadata is set once at creation
        if channel.student_info is None and descriptor.student_info is not None:
            channel.student_info = descriptor.student_info
            changed = True

        # A non-empty history replaces whatever was kept locally
        if descriptor.messages:
            history = [_stamp(m) for m in descriptor.messages]
            if history != channel.messages:
                channel.messages = history
                if "last_message" not in provided:
                    channel.last_message = history[-1].text
                if "last_message_time" not in provided:
                    channel.last_message_time = history[-1].timestamp
                changed = True

        if descriptor.status is not None and descriptor.status != channel.status:
            self._move(channel, descriptor.status)
            changed = True
        return changed

    def _move(self, channel: Channel, status: ChannelStatus) -> None:
        was_pending = self._is_pending(channel)
        channel.status = status
        if status == ChannelStatus.WAITING:
            if was_pending:
                return
            del self._active[channel.id]
            self._pending[channel.id] = channel
            channel.is_focused = False
            if self._focused_id == channel.id:
                self._focused_id = None
                self._ensure_focus()
            return

        if not was_pending:
            return
        del self._pending[channel.id]
        self._active[channel.id] = channel
        if self._focused_id is None:
            self._hand_over_focus(channel.id)
