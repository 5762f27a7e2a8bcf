import pytest
from fastapi.testclient import TestClient

from agent_desk.client.transport.transport import LoopbackTransport
from agent_desk.main import app
from agent_desk.service.desk import AgentDesk
from agent_desk.service.dispatcher.dispatcher import Operator
from agent_desk.service.registry.registry import ChannelRegistry
from agent_desk.service.tasks.queue import DeferredTaskQueue


@pytest.fixture
def registry():
    return ChannelRegistry()


@pytest.fixture
def queue():
    return DeferredTaskQueue()


@pytest.fixture
def transport():
    return LoopbackTransport()


@pytest.fixture
def operator():
    return Operator(name="Ana", sector="support", agent_id="agent-1")


@pytest.fixture
def desk(transport, operator):
    return AgentDesk(transport, operator)


#scope : function < class < module < package < session
@pytest.fixture(scope="function")
def client(desk):
    app.state.desk = desk
    with TestClient(app) as test_client:
        yield test_client
    app.state.desk = None
