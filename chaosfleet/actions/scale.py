from collections import namedtuple
from logzero import logger

from chaosfleet.common import GONE_STATES, SelectionStrategy
from chaosfleet.common.exceptions import ReadinessTimeout
from chaosfleet.probes.readiness import ReadinessPoller
from chaosfleet.provider.provider import (CloudProvider, InstanceHandle,
                                          InstanceTemplate)
from chaosfleet.registry import AgentRecord, Registry, format_agent

from typing import Dict, List

ScaleResult = namedtuple('ScaleResult', ['target', 'added', 'removed',
                                         'timed_out', 'unresolved'])


def instance_template(properties) -> InstanceTemplate:
    """
    Build the launch template for new agents from fleet properties.

    AWS_AMI has no default and must be set.
    """
    return InstanceTemplate(image_id=properties.get_required("AWS_AMI"),
                            instance_type=properties.get("AWS_BOXID"),
                            key_name=properties.get("AWS_KEY_NAME"),
                            security_group=properties.get("SECURITY_GROUP"),
                            subnet_id=properties.get("SUBNET_ID"))


def resolve_instances(provider: CloudProvider,
                      agents: List[AgentRecord]) -> Dict[str, InstanceHandle]:
    """
    Map agents' public addresses to live provider instances.

    Instances that are terminated or shutting down are ignored. Agents without
    a match are missing from the returned dict.

    :return: Dict[str, InstanceHandle] keyed by public address.
    """
    if not agents:
        return {}
    addresses = [agent.public_address for agent in agents]
    found = {}
    for handle in provider.describe_instances(public_addresses=addresses):
        if handle.state in GONE_STATES or not handle.public_address:
            continue
        found[handle.public_address] = handle
    return found


class FleetScaler(object):
    """
    Reconcile the number of registered agents with a desired fleet size.
    """

    def __init__(self, provider: CloudProvider, registry: Registry,
                 template: InstanceTemplate, poller: ReadinessPoller,
                 strategy: SelectionStrategy = SelectionStrategy.FORWARD):
        self.provider = provider
        self.registry = registry
        self.template = template
        self.poller = poller
        self.strategy = strategy

    def scale_to(self, target: int) -> ScaleResult:
        """
        Create or terminate instances until the registry holds target agents.

        Scaling up creates all missing instances in one provider call and waits
        for each of them in turn. Instances that become ready are registered
        one by one. Instances that time out are logged and left alone: they
        are neither registered, retried nor terminated.

        Scaling down removes the selected agents from the registry (and the
        agents file) first and only then terminates their instances in one
        provider call.

        A ProviderError aborts the operation. Registry changes made before the
        error are kept.

        :param target: The desired number of agents. Required.
        :type target: int
        :return: ScaleResult
        """
        if target < 0:
            raise ValueError("target must not be negative, got "
                             "{}".format(target))

        current = self.registry.count()
        logger.info("Scaling fleet from %d to %d agents", current, target)
        if target > current:
            return self._scale_up(target, target - current)
        if target < current:
            return self._scale_down(target, current - target)

        logger.info("Fleet already has %d agents. Nothing to do.", current)
        return ScaleResult(target, [], [], [], [])

    def _scale_up(self, target: int, count: int) -> ScaleResult:
        logger.info("Creating %d instance(s) from image %s (%s)", count,
                    self.template.image_id, self.template.instance_type)
        handles = self.provider.create_instances(count, self.template)

        added = []
        timed_out = []
        for handle in handles:
            try:
                ready = self.poller.wait_until_ready(handle.instance_id)
            except ReadinessTimeout as e:
                logger.warning("%s. The instance is not added to the agents "
                               "file.", e)
                timed_out.append(handle.instance_id)
                continue

            private_address = ready.private_address
            if not private_address:
                logger.debug("Instance %s has no private address. Using its "
                             "public address instead.", ready.instance_id)
                private_address = ready.public_address
            agent = AgentRecord(ready.public_address, private_address)
            if self.registry.add(agent):
                added.append(agent)
            logger.info("Instance %s registered as agent %s",
                        ready.instance_id, format_agent(agent))

        if timed_out:
            logger.warning("%d of %d instance(s) did not become ready: %s",
                           len(timed_out), len(handles), ", ".join(timed_out))
        logger.info("Added %d agent(s). The fleet has %d agent(s).",
                    len(added), self.registry.count())
        return ScaleResult(target, added, [], timed_out, [])

    def _scale_down(self, target: int, count: int) -> ScaleResult:
        removed = self.registry.take(count, self.strategy)
        logger.info("Removed %d agent(s) from %s: %s", len(removed),
                    self.registry.path,
                    ", ".join(format_agent(agent) for agent in removed))

        found = resolve_instances(self.provider, removed)
        instance_ids = []
        unresolved = []
        for agent in removed:
            handle = found.get(agent.public_address)
            if handle is None:
                logger.warning("No live instance found for agent %s. Skipping "
                               "its termination.", format_agent(agent))
                unresolved.append(agent)
            else:
                instance_ids.append(handle.instance_id)

        if instance_ids:
            logger.info("Terminating instance(s) %s", ", ".join(instance_ids))
            self.provider.terminate_instances(instance_ids)
        else:
            logger.info("No instances to terminate")
        return ScaleResult(target, [], removed, [], unresolved)


def scale_instance_count_to(count: int, registry: Registry,
                            provider: CloudProvider, properties,
                            cancel_event=None) -> ScaleResult:
    """
    Scale the fleet to count agents using the given fleet properties.

    :param count: The desired number of agents. Required.
    :type count: int
    :param registry: The agents registry. Required.
    :type registry: Registry
    :param provider: The cloud provider. Required.
    :type provider: CloudProvider
    :param properties: Fleet properties (launch template and polling policy).
        Required.
    :type properties: chaosfleet.common.properties.FleetProperties
    :param cancel_event: Interrupts readiness polling when set.
        Optional. (Default: None)
    :type cancel_event: threading.Event
    :return: ScaleResult
    """
    poller = ReadinessPoller(provider,
                             interval=properties.get_int("POLL_INTERVAL_SECONDS"),
                             max_attempts=properties.get_int("POLL_MAX_ATTEMPTS"),
                             cancel_event=cancel_event)
    # The launch template is only needed (and only validated) when growing.
    template = None
    if count > registry.count():
        template = instance_template(properties)
    scaler = FleetScaler(provider, registry, template, poller)
    return scaler.scale_to(count)
