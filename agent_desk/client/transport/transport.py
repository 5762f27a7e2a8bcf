import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx

from agent_desk.model.event.names import ConnectionState

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
StateListener = Callable[[ConnectionState], None]


def _event_name(event: Any) -> str:
    return event.value if isinstance(event, Enum) else str(event)


class TransportConnector:
    """One real-time connection: named events in both directions.

    Subclasses implement ``_send`` (outbound) and may override ``connect``
    and ``disconnect``. Reconnection policy belongs to the subclass, never to
    the router or dispatcher.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._state_listeners: List[StateListener] = []
        self._state = ConnectionState.DISCONNECTED
        self._sessions: Set[str] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attached_sessions(self) -> Set[str]:
        return set(self._sessions)

    def on(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(_event_name(event), [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(_event_name(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def deliver(self, event: str, payload: Any) -> int:
        """Dispatch one inbound event to its handlers, in registration order."""
        name = _event_name(event)
        handlers = list(self._handlers.get(name, []))
        if not handlers:
            logger.debug("no handler for event=%s", name)
            return 0
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("handler failed event=%s", name)
        return len(handlers)

    def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._send(_event_name(event), payload or {})

    def attach_session(self, session_id: str) -> None:
        self._sessions.add(session_id)

    def detach_session(self, session_id: str) -> None:
        self._sessions.discard(session_id)

    async def connect(self) -> None:
        self._set_state(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        self._sessions.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("connection state %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    def _send(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoopbackTransport(TransportConnector):
    """In-process transport; outbound events are kept in ``sent``."""

    def __init__(self) -> None:
        super().__init__()
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def sent_events(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.sent if event is None or name == _event_name(event)]

    def _send(self, event: str, payload: Dict[str, Any]) -> None:
        self.sent.append((event, payload))


class HttpTransport(TransportConnector):
    """Gateway-backed transport.

    Outbound events are POSTed to ``{base_url}/events/{event}`` as
    fire-and-forget tasks. Inbound events reach ``deliver`` through the
    service's webhook route. Failures are logged and flip the state to
    ``error``; there is no retry here.
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self._base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._inflight: Set[asyncio.Task] = set()

    async def connect(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        try:
            response = await self._client.get(f"{self._base_url}/health")
        except httpx.RequestError:
            logger.exception("gateway connect failed url=%s", self._base_url)
            self._set_state(ConnectionState.ERROR)
            return
        if response.status_code >= 400:
            logger.warning("gateway connect rejected status=%s body=%s", response.status_code, response.text)
            self._set_state(ConnectionState.ERROR)
            return
        self._set_state(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()
        await super().disconnect()

    async def aclose(self) -> None:
        await self.disconnect()
        await self._client.aclose()

    def _send(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("emit outside event loop dropped event=%s", event)
            self._set_state(ConnectionState.ERROR)
            return
        task = loop.create_task(self._post(event, payload))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _post(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            response = await self._client.post(f"{self._base_url}/events/{event}", json=payload)
        except httpx.RequestError:
            logger.exception("emit failed event=%s", event)
            self._set_state(ConnectionState.ERROR)
            return
        if response.status_code >= 400:
            logger.warning("emit rejected event=%s status=%s body=%s", event, response.status_code, response.text)
            self._set_state(ConnectionState.ERROR)
