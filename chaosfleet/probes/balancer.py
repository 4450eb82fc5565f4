from logzero import logger

from chaosfleet.provider.provider import BalancerDescriptor, CloudProvider

from typing import Union


def get_balancer(provider: CloudProvider,
                 name: str) -> Union[BalancerDescriptor, None]:
    """
    Look up a load balancer by name.

    :param provider: The cloud provider. Required.
    :type provider: CloudProvider
    :param name: The balancer name. Required.
    :type name: str
    :return: Union[BalancerDescriptor, None] None if no balancer with that name
        exists.
    """
    for descriptor in provider.describe_balancers([name]):
        if descriptor.name == name:
            logger.debug("Found balancer %s (%s)", name, descriptor.dns_name)
            return descriptor
    logger.debug("Balancer %s does not exist", name)
    return None


def balancer_is_alive(provider: CloudProvider, name: str) -> bool:
    return get_balancer(provider, name) is not None
