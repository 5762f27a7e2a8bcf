import logging
from typing import Any, Optional

from agent_desk import config
from agent_desk.client.media.media import MediaClient
from agent_desk.client.transport.transport import HttpTransport, LoopbackTransport, TransportConnector
from agent_desk.model.channel.channel import DeskSnapshot
from agent_desk.model.event.names import ConnectionState
from agent_desk.service.dispatcher.dispatcher import Operator, SessionActionDispatcher
from agent_desk.service.registry.registry import ChannelRegistry
from agent_desk.service.router.router import MessageRouter
from agent_desk.service.tasks.queue import DeferredTaskQueue

logger = logging.getLogger(__name__)


class AgentDesk:
    """Wires one registry, router and dispatcher around one transport.

    Every inbound event and operator action passes through here so the
    deferred queue is drained once the triggering update has completed.
    """

    def __init__(
        self,
        transport: TransportConnector,
        operator: Operator,
        media: Optional[MediaClient] = None,
    ) -> None:
        self.transport = transport
        self.media = media
        self.queue = DeferredTaskQueue()
        self.registry = ChannelRegistry()
        self.router = MessageRouter(self.registry, self.queue)
        self.dispatcher = SessionActionDispatcher(self.registry, transport, self.queue, operator, media)
        self.router.attach(transport)
        transport.on_state_change(self._on_state_change)

    async def start(self) -> None:
        await self.transport.connect()

    async def stop(self) -> None:
        await self.transport.disconnect()

    async def aclose(self) -> None:
        if isinstance(self.transport, HttpTransport):
            await self.transport.aclose()
        else:
            await self.transport.disconnect()
        if self.media is not None:
            await self.media.aclose()

    def receive(self, event: str, payload: Any) -> int:
        handled = self.transport.deliver(event, payload)
        self.queue.run_pending()
        return handled

    def attend(self, key: str) -> bool:
        return self._boundary(self.dispatcher.attend(key))

    def close(self, key: str) -> bool:
        return self._boundary(self.dispatcher.close(key))

    def select(self, key: str) -> bool:
        return self._boundary(self.dispatcher.select(key))

    def mark_read(self, key: str) -> bool:
        return self._boundary(self.registry.mark_read(key))

    def send(self, key: str, text: str, **media: Any) -> bool:
        return self._boundary(self.dispatcher.send(key, text, **media))

    async def send_file(self, key: str, filename: str, content: bytes, content_type: Optional[str] = None, caption: str = "") -> bool:
        sent = await self.dispatcher.send_file(key, filename, content, content_type, caption)
        return self._boundary(sent)

    async def load_history(self, key: str) -> int:
        loaded = await self.dispatcher.load_history(key)
        self.queue.run_pending()
        return loaded

    def snapshot(self) -> DeskSnapshot:
        snap = self.registry.snapshot()
        return DeskSnapshot(
            pending=snap.pending,
            active=snap.active,
            focused_channel_id=snap.focused_channel_id,
            version=snap.version,
            connection_state=self.transport.state,
        )

    def _boundary(self, result: bool) -> bool:
        self.queue.run_pending()
        return result

    def _on_state_change(self, state: ConnectionState) -> None:
        if state != ConnectionState.CONNECTED:
            return
        # Each connection gets its own backlog
        self.router.reset_snapshot_tracking()
        self.dispatcher.list_open_sessions()


def build_desk(transport: Optional[TransportConnector] = None) -> AgentDesk:
    if transport is None:
        if config.GATEWAY_URL:
            transport = HttpTransport(config.GATEWAY_URL, token=config.AUTH_TOKEN, timeout=config.HTTP_TIMEOUT)
        else:
            logger.info("GATEWAY_URL not set, using loopback transport")
            transport = LoopbackTransport()
    operator = Operator(name=config.OPERATOR_NAME, sector=config.OPERATOR_SECTOR, agent_id=config.OPERATOR_ID)
    media = MediaClient(config.API_URL, token=config.AUTH_TOKEN, timeout=config.HTTP_TIMEOUT)
    return AgentDesk(transport, operator, media)
