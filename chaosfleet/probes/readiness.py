import threading

from logzero import logger

from chaosfleet.common import (DEFAULT_FLEET_POLL_INTERVAL_SECONDS,
                               DEFAULT_FLEET_POLL_MAX_ATTEMPTS)
from chaosfleet.common.exceptions import PollingCancelled, ReadinessTimeout
from chaosfleet.provider.provider import CloudProvider, InstanceHandle

from typing import Union


class ReadinessPoller(object):
    """
    Wait for a freshly created instance to become addressable.

    An instance is ready when the provider reports it running and a public
    address has been assigned. The poller waits `interval` seconds, asks the
    provider, and repeats at most `max_attempts` times. The longest it can
    block is therefore interval * max_attempts seconds (see timeout_bound).

    Waiting is done on cancel_event, a threading.Event. Setting the event from
    another thread (a signal handler, for example) interrupts the current wait
    and makes wait_until_ready raise PollingCancelled.
    """

    def __init__(self, provider: CloudProvider,
                 interval: Union[int, float] = DEFAULT_FLEET_POLL_INTERVAL_SECONDS,
                 max_attempts: int = DEFAULT_FLEET_POLL_MAX_ATTEMPTS,
                 cancel_event: threading.Event = None):
        if interval < 0:
            raise ValueError("interval must not be negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.interval = interval
        self.max_attempts = max_attempts
        self.cancel_event = cancel_event or threading.Event()

    @property
    def timeout_bound(self) -> Union[int, float]:
        return self.interval * self.max_attempts

    def cancel(self) -> None:
        self.cancel_event.set()

    def poll_once(self, instance_id: str) -> Union[InstanceHandle, None]:
        """
        Ask the provider for the instance's status once.

        :return: The instance handle if it is ready. Otherwise, None.
        """
        for handle in self.provider.describe_instances(
                instance_ids=[instance_id]):
            if handle.instance_id == instance_id and handle.is_ready():
                return handle
        return None

    def wait_until_ready(self, instance_id: str) -> InstanceHandle:
        """
        Block until the instance is ready or the attempts are used up.

        :param instance_id: The provider's instance id. Required.
        :type instance_id: str
        :return: InstanceHandle of the ready instance, carrying its addresses.
        :raises ReadinessTimeout: if the instance is not ready after
            max_attempts polls.
        :raises PollingCancelled: if cancel_event is set while waiting.
        """
        logger.info("Waiting up to %s seconds for instance %s to be running "
                    "(%s attempts every %s seconds)", self.timeout_bound,
                    instance_id, self.max_attempts, self.interval)
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            if self.cancel_event.wait(self.interval):
                raise PollingCancelled(instance_id)

            handle = self.poll_once(instance_id)
            if handle:
                logger.debug("Instance %s is running at %s after %d "
                             "attempt(s)", instance_id, handle.public_address,
                             attempt)
                return handle
            logger.debug("Instance %s is not ready yet (attempt %d of %d)",
                         instance_id, attempt, self.max_attempts)

        raise ReadinessTimeout(instance_id, attempt, self.timeout_bound)
