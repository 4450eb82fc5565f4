"""
Exceptions raised by chaosfleet.

Per-agent conditions (ReadinessTimeout, an unresolved address) are caught by
the actions that raise them and logged as warnings. Everything else propagates
to the caller; run.py turns it into a non-zero exit status.
"""


class FleetError(Exception):
    """Base class of every error raised by chaosfleet."""


class ConfigurationError(FleetError):
    """A properties file is missing, unreadable or holds an invalid value."""


class CredentialsError(ConfigurationError):
    """The provider credentials could not be loaded."""


class RegistryLoadError(FleetError):
    """The agents file is missing or malformed."""

    def __init__(self, path, reason, line_number=None):
        self.path = path
        self.reason = reason
        self.line_number = line_number
        if line_number is None:
            message = "Unable to load agents file {}: {}".format(path, reason)
        else:
            message = "Unable to load agents file {} (line {}): {}".format(
                path, line_number, reason)
        super().__init__(message)


class PersistenceError(FleetError):
    """The agents file could not be written."""


class ProviderError(FleetError):
    """A cloud provider API call failed."""

    def __init__(self, operation, reason):
        self.operation = operation
        self.reason = reason
        super().__init__("Provider call {} failed: {}".format(operation,
                                                              reason))


class ReadinessTimeout(FleetError):
    """An instance did not become ready within the polling bound."""

    def __init__(self, instance_id, attempts, bound):
        self.instance_id = instance_id
        self.attempts = attempts
        self.bound = bound
        super().__init__("Timeout waiting for running status id={} after {} "
                         "attempts ({} seconds)".format(instance_id, attempts,
                                                        bound))


class PollingCancelled(FleetError):
    """Readiness polling was interrupted by the surrounding context."""

    def __init__(self, instance_id):
        self.instance_id = instance_id
        super().__init__("Polling cancelled for id={}".format(instance_id))


class BalancerProvisionError(FleetError):
    """The provider rejected the creation of a load balancer."""


class AgentCommunicationError(FleetError):
    """An agent could not be reached or did not acknowledge a message."""


class DispatchError(FleetError):
    """A broadcast failed. Names the first agent that failed."""

    def __init__(self, agent, cause):
        self.agent = agent
        self.cause = cause
        super().__init__("Could not send message to agent {}: {}".format(
            agent.public_address, cause))
