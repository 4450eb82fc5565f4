import os

from logzero import logger
from os.path import expanduser

from chaosfleet.common import *
from chaosfleet.common.exceptions import ConfigurationError

from typing import Dict, List, Union

# Every key chaosfleet reads, with its default. A default of None marks a key
# without a sensible default; reading it while it is unset is an error.
DEFAULTS = {
    "AGENT_CONNECT_TIMEOUT": DEFAULT_FLEET_AGENT_CONNECT_TIMEOUT,
    "AGENT_CONTROL_COMMAND": DEFAULT_FLEET_AGENT_CONTROL_COMMAND,
    "AGENT_IDENTITY_FILE": "",
    "AGENT_SSH_CONFIG_FILE": "",
    "AGENT_SSH_USER": DEFAULT_FLEET_AGENT_SSH_USER,
    "AWS_AMI": None,
    "AWS_BOXID": DEFAULT_FLEET_AWS_BOXID,
    "AWS_CREDENTIALS": DEFAULT_FLEET_AWS_CREDENTIALS,
    "AWS_KEY_NAME": DEFAULT_FLEET_AWS_KEY_NAME,
    "AWS_REGION": DEFAULT_FLEET_AWS_REGION,
    "ELB_PORT_IN": DEFAULT_FLEET_ELB_PORT_IN,
    "ELB_PORT_OUT": DEFAULT_FLEET_ELB_PORT_OUT,
    "ELB_PROTOCOL": DEFAULT_FLEET_ELB_PROTOCOL,
    "ELB_ZONES": DEFAULT_FLEET_ELB_ZONES,
    "POLL_INTERVAL_SECONDS": DEFAULT_FLEET_POLL_INTERVAL_SECONDS,
    "POLL_MAX_ATTEMPTS": DEFAULT_FLEET_POLL_MAX_ATTEMPTS,
    "SECURITY_GROUP": DEFAULT_FLEET_SECURITY_GROUP,
    "SUBNET_ID": DEFAULT_FLEET_SUBNET_ID,
}


def parse_properties(path: str) -> Dict[str, str]:
    """
    Parse a Java style properties file.

    Each non blank line holds KEY=VALUE (or KEY:VALUE). Lines starting with '#'
    or '!' are comments. Keys and values are stripped of surrounding
    whitespace.

    :param path: The relative or absolute path to the properties file.
        Required.
    :type path: str
    :return: Dict[str, str]
    """
    properties = {}
    try:
        with open(expanduser(path), 'r') as propertiesfile:
            for line_number, line in enumerate(propertiesfile, start=1):
                line = line.strip()
                if not line or line[0] in ('#', '!'):
                    continue
                separators = [i for i in (line.find('='), line.find(':'))
                              if i > 0]
                if not separators:
                    raise ConfigurationError(
                        "Invalid property on line {} of {}: '{}'".format(
                            line_number, path, line))
                index = min(separators)
                properties[line[:index].strip()] = line[index + 1:].strip()
    except OSError as e:
        raise ConfigurationError(
            "Unable to read properties file {}".format(path)) from e
    return properties


class FleetProperties(object):
    """
    Configuration of a fleet, read from a properties file.

    If no path is given, DEFAULT_FLEET_PROPERTIES_FILE is read from the working
    directory when it exists. An explicitly given path must exist.
    """

    def __init__(self, path: str = None, overrides: Dict[str, str] = None):
        self.path = path
        self._properties = {}
        if path is None:
            if os.path.isfile(DEFAULT_FLEET_PROPERTIES_FILE):
                self.path = DEFAULT_FLEET_PROPERTIES_FILE
        elif not os.path.isfile(expanduser(path)):
            raise ConfigurationError(
                "Properties file {} does not exist".format(path))

        if self.path:
            logger.debug("Loading properties from %s", self.path)
            self._properties = parse_properties(self.path)
        else:
            logger.debug("No properties file found. Using defaults.")

        if overrides:
            self._properties.update(overrides)

    def get(self, key: str, default: Union[str, int] = None) -> Union[str, int]:
        if key in self._properties:
            return self._properties[key]
        if default is not None:
            return default
        return DEFAULTS.get(key)

    def get_required(self, key: str) -> str:
        value = self.get(key)
        if value is None or value == "":
            raise ConfigurationError(
                "Property {} is required but not set".format(key))
        return value

    def get_int(self, key: str, default: int = None) -> int:
        value = self.get(key, default)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                "Property {} must be an integer, got '{}'".format(key,
                                                                  value)) from e

    def get_list(self, key: str) -> List[str]:
        """
        Comma separated values, stripped, empty entries dropped.
        """
        value = self.get(key) or ""
        return [item.strip() for item in str(value).split(",") if item.strip()]

    def __contains__(self, key):
        return key in self._properties
