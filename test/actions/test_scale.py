import pytest

from chaosfleet.actions.scale import (FleetScaler, instance_template,
                                      resolve_instances,
                                      scale_instance_count_to)
from chaosfleet.common import SelectionStrategy, TERMINATED_STATE
from chaosfleet.common.exceptions import ConfigurationError, ProviderError
from chaosfleet.common.properties import FleetProperties
from chaosfleet.probes.readiness import ReadinessPoller
from chaosfleet.provider.provider import InstanceTemplate
from chaosfleet.registry import AgentRecord, Registry
from test.fakes import FakeProvider, RecordingEvent

TEMPLATE = InstanceTemplate('ami-1234', 'm1.small', 'simulator', 'simulator',
                            '')


def make_scaler(provider, registry, max_attempts=3, **kwargs):
    poller = ReadinessPoller(provider, interval=30, max_attempts=max_attempts,
                             cancel_event=RecordingEvent())
    return FleetScaler(provider, registry, TEMPLATE, poller, **kwargs)


def fleet(tmp_path, provider, count):
    """A saved registry of count agents backed by running fake instances."""
    agents = []
    for number in range(1, count + 1):
        agent = AgentRecord('52.0.0.{}'.format(number),
                            '172.16.0.{}'.format(number))
        provider.add_running(*agent)
        agents.append(agent)
    registry = Registry(str(tmp_path / 'agents.txt'), agents)
    registry.save()
    return registry


@pytest.mark.parametrize('target', [0, 1, 3, 5])
def test_scale_to_target(tmp_path, target):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 2)

    make_scaler(provider, registry).scale_to(target)

    assert registry.count() == target
    assert Registry.load(registry.path).count() == target


def test_scale_up_registers_ready_instances(tmp_path):
    provider = FakeProvider(ready_after=2)
    registry = Registry(str(tmp_path / 'agents.txt'))

    result = make_scaler(provider, registry).scale_to(2)

    assert provider.calls_to('create_instances') == [('create_instances', 2,
                                                      TEMPLATE)]
    assert result.added == [AgentRecord('54.0.0.1', '10.0.0.1'),
                            AgentRecord('54.0.0.2', '10.0.0.2')]
    assert result.timed_out == []
    assert Registry.load(registry.path).agents() == result.added


def test_scale_up_with_timeouts(tmp_path):
    provider = FakeProvider(never_ready=['i-0002'])
    registry = Registry(str(tmp_path / 'agents.txt'))

    result = make_scaler(provider, registry).scale_to(3)

    assert result.timed_out == ['i-0002']
    assert len(result.added) == 2
    assert registry.count() == 2
    assert '54.0.0.2' not in registry.public_addresses()
    # The instance that timed out is neither retried nor terminated.
    assert provider.calls_to('terminate_instances') == []
    assert len(provider.calls_to('create_instances')) == 1


def test_scale_to_current_is_a_noop(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 3)
    provider.calls = []

    result = make_scaler(provider, registry).scale_to(3)

    assert provider.calls == []
    assert registry.count() == 3
    assert result.added == [] and result.removed == []


def test_scale_down_removes_oldest(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 3)
    a, b, c = registry.agents()

    result = make_scaler(provider, registry).scale_to(1)

    assert result.removed == [a, b]
    assert registry.agents() == [c]
    assert Registry.load(registry.path).agents() == [c]
    assert provider.calls_to('terminate_instances') == [
        ('terminate_instances', ['i-0001', 'i-0002'])]
    assert provider.instances['i-0001'].state == TERMINATED_STATE
    assert provider.instances['i-0003'].state == 'running'


def test_scale_down_with_reverse_strategy(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 3)
    a, b, c = registry.agents()

    make_scaler(provider, registry,
                strategy=SelectionStrategy.REVERSE).scale_to(1)

    assert registry.agents() == [a]


def test_scale_down_persists_before_terminating(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 3)
    seen = []
    terminate = provider.terminate_instances

    def check_then_terminate(instance_ids):
        seen.append(Registry.load(registry.path).count())
        terminate(instance_ids)

    provider.terminate_instances = check_then_terminate
    make_scaler(provider, registry).scale_to(1)

    assert seen == [1]


def test_scale_down_skips_unresolved_agents(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 3)
    ghost = AgentRecord('52.9.9.9', '172.16.9.9')
    registry = Registry(registry.path, [ghost] + registry.agents())
    registry.save()

    result = make_scaler(provider, registry).scale_to(2)

    assert result.unresolved == [ghost]
    assert ghost not in registry
    assert registry.count() == 2
    assert provider.calls_to('terminate_instances') == [
        ('terminate_instances', ['i-0001'])]


def test_scale_down_ignores_terminated_instances(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 2)
    provider.instances['i-0001'] = provider.instances['i-0001']._replace(
        state=TERMINATED_STATE)

    result = make_scaler(provider, registry).scale_to(1)

    assert result.unresolved == [AgentRecord('52.0.0.1', '172.16.0.1')]
    assert provider.calls_to('terminate_instances') == []


def test_create_failure_leaves_registry_untouched(tmp_path):
    provider = FakeProvider(fail_on=['create_instances'])
    registry = fleet(tmp_path, provider, 1)

    with pytest.raises(ProviderError):
        make_scaler(provider, registry).scale_to(4)
    assert Registry.load(registry.path).count() == 1


def test_terminate_failure_keeps_registry_removal(tmp_path):
    provider = FakeProvider(fail_on=['terminate_instances'])
    registry = fleet(tmp_path, provider, 3)

    with pytest.raises(ProviderError):
        make_scaler(provider, registry).scale_to(1)
    assert Registry.load(registry.path).count() == 1


def test_describe_failure_on_scale_down_keeps_registry_removal(tmp_path):
    provider = FakeProvider(fail_on=['describe_instances'])
    registry = fleet(tmp_path, provider, 3)

    with pytest.raises(ProviderError):
        make_scaler(provider, registry).scale_to(1)

    assert Registry.load(registry.path).agents() == [
        AgentRecord('52.0.0.3', '172.16.0.3')]
    assert provider.calls_to('terminate_instances') == []


def test_describe_failure_while_polling_aborts_scale_up(tmp_path):
    provider = FakeProvider(fail_on=['describe_instances'])
    registry = Registry(str(tmp_path / 'agents.txt'))

    with pytest.raises(ProviderError):
        make_scaler(provider, registry).scale_to(2)

    assert len(provider.calls_to('create_instances')) == 1
    assert len(provider.calls_to('describe_instances')) == 1
    assert registry.count() == 0
    assert not (tmp_path / 'agents.txt').exists()


def test_negative_target(tmp_path):
    registry = Registry(str(tmp_path / 'agents.txt'))
    with pytest.raises(ValueError):
        make_scaler(FakeProvider(), registry).scale_to(-1)


def test_resolve_instances(tmp_path):
    provider = FakeProvider()
    registry = fleet(tmp_path, provider, 2)

    found = resolve_instances(provider, registry.agents())

    assert sorted(found) == ['52.0.0.1', '52.0.0.2']
    assert found['52.0.0.2'].instance_id == 'i-0002'
    assert resolve_instances(provider, []) == {}


def test_instance_template(tmp_path):
    properties_file = tmp_path / 'fleet.properties'
    properties_file.write_text("AWS_AMI=ami-42\nSUBNET_ID=subnet-1\n")

    template = instance_template(FleetProperties(str(properties_file)))

    assert template == InstanceTemplate('ami-42', 'm1.small', 'simulator',
                                        'simulator', 'subnet-1')


def test_scale_instance_count_to(tmp_path):
    properties_file = tmp_path / 'fleet.properties'
    properties_file.write_text("AWS_AMI=ami-42\nPOLL_INTERVAL_SECONDS=0\n"
                               "POLL_MAX_ATTEMPTS=2\n")
    properties = FleetProperties(str(properties_file))
    provider = FakeProvider()
    registry = Registry(str(tmp_path / 'agents.txt'))

    result = scale_instance_count_to(2, registry, provider, properties)

    assert len(result.added) == 2
    assert provider.calls_to('create_instances')[0][2].image_id == 'ami-42'


def test_scale_up_needs_an_image(tmp_path, monkeypatch):
    monkeypatch.chdir(str(tmp_path))
    registry = Registry(str(tmp_path / 'agents.txt'))
    with pytest.raises(ConfigurationError):
        scale_instance_count_to(1, registry, FakeProvider(), FleetProperties())
