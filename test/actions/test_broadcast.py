import pytest

from chaosfleet.actions.broadcast import (BoundedParallelStrategy,
                                          ControlDispatcher,
                                          SequentialStrategy)
from chaosfleet.common.exceptions import (AgentCommunicationError,
                                          DispatchError)
from chaosfleet.execute.execute import Message
from chaosfleet.registry import AgentRecord, Registry
from test.fakes import FakeConnector

A = AgentRecord('54.0.0.1', '10.0.0.1')
B = AgentRecord('54.0.0.2', '10.0.0.2')
C = AgentRecord('54.0.0.3', '10.0.0.3')
MESSAGE = Message('kill-worker', {'count': 1})


@pytest.fixture
def registry(tmp_path):
    return Registry(str(tmp_path / 'agents.txt'), [A, B, C])


def test_broadcast_reaches_every_agent(registry):
    connector = FakeConnector()

    delivered = ControlDispatcher(registry, connector).broadcast(MESSAGE)

    assert delivered == 3
    assert connector.delivered == [(A, MESSAGE), (B, MESSAGE), (C, MESSAGE)]
    assert all(connection.closed for connection in connector.connections)


def test_broadcast_stops_at_first_failure(registry):
    connector = FakeConnector(failing=['54.0.0.2'])

    with pytest.raises(DispatchError) as excinfo:
        ControlDispatcher(registry, connector).broadcast(MESSAGE)

    assert excinfo.value.agent == B
    assert isinstance(excinfo.value.cause, AgentCommunicationError)
    assert connector.received() == [A]
    assert [c.agent for c in connector.connections] == [A, B]
    assert all(connection.closed for connection in connector.connections)


def test_broadcast_unreachable_agent(registry):
    connector = FakeConnector(unreachable=['54.0.0.1'])

    with pytest.raises(DispatchError) as excinfo:
        ControlDispatcher(registry, connector).broadcast(MESSAGE)

    assert excinfo.value.agent == A
    assert connector.delivered == []


def test_broadcast_to_empty_fleet(tmp_path):
    registry = Registry(str(tmp_path / 'agents.txt'))
    connector = FakeConnector()

    assert ControlDispatcher(registry, connector).broadcast(MESSAGE) == 0
    assert connector.connections == []


def test_sequential_is_the_default(registry):
    dispatcher = ControlDispatcher(registry, FakeConnector())
    assert isinstance(dispatcher.strategy, SequentialStrategy)


def test_parallel_broadcast(registry):
    connector = FakeConnector()
    dispatcher = ControlDispatcher(registry, connector,
                                   strategy=BoundedParallelStrategy(2))

    assert dispatcher.broadcast(MESSAGE) == 3
    assert sorted(connector.received()) == [A, B, C]
    assert all(connection.closed for connection in connector.connections)


def test_parallel_broadcast_reports_first_failure_in_registry_order(registry):
    connector = FakeConnector(failing=['54.0.0.2', '54.0.0.3'])
    dispatcher = ControlDispatcher(registry, connector,
                                   strategy=BoundedParallelStrategy(1))

    with pytest.raises(DispatchError) as excinfo:
        dispatcher.broadcast(MESSAGE)

    assert excinfo.value.agent == B
    assert connector.received() == [A]


def test_parallel_needs_a_worker():
    with pytest.raises(ValueError):
        BoundedParallelStrategy(0)


def test_message_to_json():
    assert MESSAGE.to_json() == '{"payload": {"count": 1}, "type": "kill-worker"}'
