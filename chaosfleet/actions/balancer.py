from logzero import logger
from os.path import expanduser

from chaosfleet.actions.scale import resolve_instances
from chaosfleet.common import DEFAULT_FLEET_ELB_FILE
from chaosfleet.common.exceptions import (BalancerProvisionError,
                                          ConfigurationError,
                                          ProviderError)
from chaosfleet.probes.balancer import get_balancer
from chaosfleet.provider.provider import (BalancerDescriptor, CloudProvider,
                                          Listener)
from chaosfleet.registry import Registry, format_agent

from typing import List


class LoadBalancerBinder(object):
    """
    Provision a named load balancer once and register instances with it.

    Checking for the balancer and creating it are two provider calls. Two
    binders working on the same balancer name at the same time may both try to
    create it; run one command at a time.
    """

    def __init__(self, provider: CloudProvider,
                 dns_file: str = DEFAULT_FLEET_ELB_FILE):
        self.provider = provider
        self.dns_file = dns_file

    def ensure_balancer(self, name: str, zones: List[str], protocol: str,
                        port_in: int, port_out: int) -> BalancerDescriptor:
        """
        Create the balancer unless one with the same name already exists.

        The DNS name of a newly created balancer is appended to dns_file.

        :param name: The balancer name. Required.
        :type name: str
        :param zones: Availability zones the balancer serves. Required.
        :type zones: List[str]
        :param protocol: Listener protocol (tcp, http, ...). Required.
        :type protocol: str
        :param port_in: The port the balancer listens on. Required.
        :type port_in: int
        :param port_out: The instance port traffic is forwarded to. Required.
        :type port_out: int
        :return: BalancerDescriptor
        :raises BalancerProvisionError: if the provider rejects the creation.
        """
        existing = get_balancer(self.provider, name)
        if existing:
            logger.info("Load balancer %s already exists (%s)", name,
                        existing.dns_name)
            return existing

        listener = Listener(protocol, int(port_in), int(port_out))
        logger.info("Creating load balancer %s in zone(s) %s with listener "
                    "%s %s -> %s", name, ",".join(zones), listener.protocol,
                    listener.port_in, listener.port_out)
        try:
            created = self.provider.create_balancer(name, zones, listener)
        except ProviderError as e:
            raise BalancerProvisionError(
                "Could not create load balancer {}".format(name)) from e

        if self.dns_file and created.dns_name:
            self._record_dns_name(created.dns_name)
        return created

    def _record_dns_name(self, dns_name: str) -> None:
        try:
            with open(expanduser(self.dns_file), 'a') as dnsfile:
                dnsfile.write(dns_name + "\n")
        except OSError as e:
            logger.warning("Unable to record DNS name %s in %s: %s", dns_name,
                           self.dns_file, e)

    def register_members(self, name: str, instance_ids: List[str]) -> None:
        """
        Register instances with the balancer in a single provider call.

        Registering an instance that is already registered is not an error.
        """
        if not instance_ids:
            logger.info("No instances to add to load balancer %s", name)
            return
        logger.info("Adding instance(s) %s to load balancer %s",
                    ", ".join(instance_ids), name)
        self.provider.register_instances(name, list(instance_ids))

    def add_agents_to_balancer(self, name: str, registry: Registry,
                               zones: List[str],
                               listener: Listener) -> List[str]:
        """
        Ensure the balancer exists and register every agent's instance with it.

        Agents whose public address does not resolve to a live instance are
        logged and skipped. The registry is never modified.

        :return: List[str] the registered instance ids.
        """
        self.ensure_balancer(name, zones, listener.protocol, listener.port_in,
                             listener.port_out)

        agents = registry.agents()
        found = resolve_instances(self.provider, agents)
        instance_ids = []
        for agent in agents:
            handle = found.get(agent.public_address)
            if handle is None:
                logger.warning("No live instance found for agent %s. It is not "
                               "added to load balancer %s.",
                               format_agent(agent), name)
                continue
            instance_ids.append(handle.instance_id)

        self.register_members(name, instance_ids)
        return instance_ids


def add_agents_to_balancer(name: str, registry: Registry,
                           provider: CloudProvider, properties) -> List[str]:
    """
    Bind every registered agent to a load balancer configured by properties.

    Reads ELB_ZONES, ELB_PROTOCOL, ELB_PORT_IN and ELB_PORT_OUT.

    :return: List[str] the registered instance ids.
    """
    zones = properties.get_list("ELB_ZONES")
    if not zones:
        raise ConfigurationError("ELB_ZONES must name at least one availability zone")
    listener = Listener(properties.get("ELB_PROTOCOL"),
                        properties.get_int("ELB_PORT_IN"),
                        properties.get_int("ELB_PORT_OUT"))
    binder = LoadBalancerBinder(provider)
    return binder.add_agents_to_balancer(name, registry, zones, listener)
