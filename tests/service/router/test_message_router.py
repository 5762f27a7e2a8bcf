import pytest

from agent_desk.model.channel.channel import ChannelDescriptor, ChannelStatus, Message, Sender
from agent_desk.model.event.names import InboundEvent
from agent_desk.service.router.router import MessageRouter


@pytest.fixture
def router(registry, queue):
    return MessageRouter(registry, queue)


def _snapshot(**overrides):
    item = {
        "id": "p1",
        "status": "ABERTO",
        "sessionId": "s1",
        "sector": "finance",
        "createdAt": "2024-05-01T10:00:00Z",
        "number": "2024-001",
    }
    item.update(overrides)
    return item


def test_user_message_promotes_pending_channel(router, registry, queue):
    registry.upsert_channel({"id": "p1", "session_id": "s1", "status": "WAITING"})

    channel_id = router.handle_new_message({"sessionId": "s1", "sender": "USER", "text": "hello"})
    queue.run_pending()

    assert channel_id == "p1"
    channel = registry.get("p1")
    assert channel.status == ChannelStatus.IN_PROGRESS
    assert [m.text for m in channel.messages] == ["hello"]
    assert channel.is_focused
    assert channel.unread_count == 0
    assert registry.pending_channels() == []


def test_unknown_user_session_creates_pending_channel(router, registry):
    router.handle_new_message({"sessionId": "s2", "sender": "USER", "text": "x"})

    pending = registry.pending_channels()
    assert [(c.id, c.session_id) for c in pending] == [("s2", "s2")]
    assert [m.text for m in pending[0].messages] == ["x"]
    assert pending[0].name == "Session s2"
    assert registry.active_channels() == []


def test_walk_up_channel_uses_sender_name(router, registry):
    router.handle_new_message({"sessionId": "s2", "sender": "usuario", "text": "oi", "senderName": "Joana"})

    assert registry.get("s2").name == "Joana"


def test_unknown_agent_message_is_dropped(router, registry, caplog):
    before = registry.snapshot()

    result = router.handle_new_message({"sessionId": "s3", "sender": "AGENT", "text": "y"})

    assert result is None
    assert registry.snapshot() == before
    assert "unroutable AGENT message dropped" in caplog.text


def test_agent_message_does_not_promote_pending(router, registry):
    registry.upsert_channel({"id": "p1", "session_id": "s1"})

    router.handle_new_message({"sessionId": "s1", "sender": "AGENT", "text": "auto reply"})

    channel = registry.get("p1")
    assert channel.is_pending
    assert channel.unread_count == 1


def test_legacy_protocol_id_is_used_without_session(router, registry):
    registry.upsert_channel({"id": "p1", "session_id": "s1", "status": "IN_PROGRESS"})

    router.handle_new_message({"protocolo_id": "p1", "sender": "atendente", "mensagem": "legacy"})

    assert registry.get("p1").messages[-1].text == "legacy"
    assert registry.get("p1").messages[-1].sender == Sender.AGENT


def test_focused_channel_is_marked_read_only_after_drain(router, registry, queue):
    registry.upsert_channel({"id": "a1", "session_id": "s1", "status": "IN_PROGRESS"})
    registry.upsert_channel({"id": "a2", "session_id": "s2", "status": "IN_PROGRESS"})
    # Unread carried over from before the channel was focused
    registry.append_message("s2", Message(sender=Sender.USER, text="earlier"))
    registry.focus_channel("a2")

    router.handle_new_message({"sessionId": "s2", "sender": "USER", "text": "now"})
    assert registry.get("a2").unread_count == 1
    assert len(queue) == 1

    queue.run_pending()
    assert registry.get("a2").unread_count == 0


def test_unfocused_channel_accumulates_unread(router, registry, queue):
    registry.upsert_channel({"id": "a1", "session_id": "s1", "status": "IN_PROGRESS"})
    registry.upsert_channel({"id": "a2", "session_id": "s2", "status": "IN_PROGRESS"})

    router.handle_new_message({"sessionId": "s2", "sender": "USER", "text": "one"})
    router.handle_new_message({"sessionId": "s2", "sender": "USER", "text": "two"})
    queue.run_pending()

    assert registry.get("a2").unread_count == 2
    assert registry.focused_channel_id == "a1"


def test_malformed_payloads_are_dropped(router, registry):
    assert router.handle_new_message({"sessionId": "s1", "sender": "ROBOT", "text": "?"}) is None
    assert router.handle_new_message({"sender": "USER", "text": "no key"}) is None
    assert router.handle_new_message(None) is None
    assert registry.snapshot().version == 0


def test_new_file_gets_default_text(router, registry):
    router.handle_new_file({"sessionId": "s1", "sender": "USER", "mediaUrl": "http://cdn/x.pdf", "fileName": "x.pdf"})

    message = registry.get("s1").messages[-1]
    assert message.text == "File received: x.pdf"
    assert message.media_url == "http://cdn/x.pdf"


def test_open_sessions_builds_channels_with_history(router, registry):
    payload = [
        _snapshot(
            student={"id": "st-1", "nome": "Maria", "curso": "Law", "telefone": "5511999"},
            priorMessages=[
                {"content": "hi", "origin": "USUARIO", "timestamp": "2024-05-01T10:01:00Z"},
                {"content": "hello", "origin": "ATENDENTE", "timestamp": "2024-05-01T10:02:00Z"},
            ],
        ),
        _snapshot(id="p2", sessionId=None, status="EM_ATENDIMENTO", subject="Refund"),
    ]

    assert router.handle_open_sessions(payload) == 2

    first = registry.get("p1")
    assert first.name == "Maria"
    assert first.session_id == "s1"
    assert first.is_pending
    assert [(m.sender, m.text) for m in first.messages] == [(Sender.USER, "hi"), (Sender.AGENT, "hello")]
    assert first.last_message == "hello"
    assert first.student_info.course == "Law"
    assert first.student_info.contact_info == "5511999"

    second = registry.get("p2")
    assert second.session_id == "p2"
    assert second.name == "Protocol 2024-001"
    assert second.last_message == "Refund"
    assert second.status == ChannelStatus.IN_PROGRESS
    assert registry.focused_channel_id == "p2"


def test_open_sessions_applied_once_per_connection(router, registry):
    payload = [_snapshot()]
    router.handle_open_sessions(payload)
    registry.append_message("p1", Message(sender=Sender.USER, text="local"))

    assert router.handle_open_sessions(payload) == 0
    assert [m.text for m in registry.get("p1").messages] == ["local"]

    router.reset_snapshot_tracking()
    assert router.handle_open_sessions(payload) == 1


def test_open_sessions_skips_closed_and_invalid_entries(router, registry):
    payload = [_snapshot(status="FECHADO"), {"status": "ABERTO"}, _snapshot(id="p3", status="whatever")]

    assert router.handle_open_sessions(payload) == 1
    assert registry.get("p1") is None
    assert registry.get("p3").is_pending


def test_open_sessions_rejects_non_list(router):
    assert router.handle_open_sessions("nope") == 0


def test_session_waiting_only_adds_unknown_channels(router, registry):
    registry.upsert_channel(ChannelDescriptor(id="p1", name="Kept"))

    assert router.handle_session_waiting(_snapshot(student={"nome": "Other"})) is False
    assert registry.get("p1").name == "Kept"

    assert router.handle_session_waiting(_snapshot(id="p9", sessionId="s9")) is True
    assert registry.get("s9").id == "p9"


def test_agent_joined_and_session_ended_append_system_notices(router, registry):
    registry.upsert_channel({"id": "p1", "session_id": "s1"})

    router.handle_agent_joined({"sessionId": "s1", "agentName": "Ana"})
    router.handle_session_ended({"sessionId": "s1"})
    router.handle_session_ended({"sessionId": "unknown"})

    channel = registry.get("p1")
    assert [m.text for m in channel.messages] == ["Agent Ana joined the conversation", "Session ended"]
    assert all(m.sender == Sender.SYSTEM for m in channel.messages)
    assert channel.unread_count == 0
    assert registry.get("unknown") is None


def test_attach_registers_handlers_on_transport(router, registry, transport):
    router.attach(transport)

    transport.deliver(InboundEvent.NEW_MESSAGE, {"sessionId": "s5", "sender": "USER", "text": "via transport"})
    assert registry.get("s5") is not None

    router.detach()
    assert transport.deliver(InboundEvent.NEW_MESSAGE, {"sessionId": "s6", "sender": "USER", "text": "x"}) == 0
    assert registry.get("s6") is None
