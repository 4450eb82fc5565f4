import abc
import json
import os
import shlex
import socket

from collections import namedtuple

from logzero import logger

from fabric import Connection, Config
from paramiko.ssh_exception import SSHException

from chaosfleet.common import (DEFAULT_FLEET_AGENT_CONNECT_TIMEOUT,
                               DEFAULT_FLEET_AGENT_CONTROL_COMMAND)
from chaosfleet.common.exceptions import AgentCommunicationError
from chaosfleet.registry import AgentRecord

Result = namedtuple('Result', ['return_code', 'stdout', 'stderr'])


class Message(namedtuple('Message', ['message_type', 'payload'])):
    """
    A control message. The payload is opaque to chaosfleet; it only has to be
    JSON serializable.
    """
    __slots__ = ()

    def to_json(self) -> str:
        return json.dumps({'type': self.message_type, 'payload': self.payload},
                          sort_keys=True)


class AgentConnection(object, metaclass=abc.ABCMeta):
    def __init__(self, agent: AgentRecord):
        self.agent = agent

    @abc.abstractmethod
    def send(self, message: Message) -> None:
        raise NotImplementedError('users must define send to use this base class')

    @abc.abstractmethod
    def close(self) -> None:
        raise NotImplementedError('users must define close to use this base class')

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class AgentConnector(object, metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def open(self, agent: AgentRecord) -> AgentConnection:
        raise NotImplementedError('users must define open to use this base class')


class FabricAgentConnection(AgentConnection):
    def __init__(self, agent, connection, control_command):
        super().__init__(agent)
        self._connection = connection
        self._control_command = control_command

    def send(self, message):
        command = "{} {}".format(self._control_command,
                                 shlex.quote(message.to_json()))
        logger.debug("Sending %s to agent %s", message.message_type,
                     self.agent.public_address)
        try:
            rtn = self._connection.run(command, hide=True, warn=True)
        except (SSHException, socket.error) as e:
            raise AgentCommunicationError(
                "Unable to reach agent {}: {}".format(self.agent.public_address,
                                                      e)) from e
        result = Result(rtn.return_code, rtn.stdout, rtn.stderr)
        if result.return_code != 0:
            raise AgentCommunicationError(
                "Agent {} rejected message {} (exit code {}): {}".format(
                    self.agent.public_address, message.message_type,
                    result.return_code, result.stderr.strip()))
        return result

    def close(self):
        self._connection.close()


class FabricAgentConnector(AgentConnector):
    """
    Reach agents over SSH and deliver messages to their control command.

    The control command runs on the agent with the JSON encoded message as its
    only argument. An exit code of 0 acknowledges the message.
    """
    config = None

    def __init__(self, ssh_config_file=None, user=None, identity_file=None,
                 control_command=DEFAULT_FLEET_AGENT_CONTROL_COMMAND,
                 connect_timeout=DEFAULT_FLEET_AGENT_CONNECT_TIMEOUT):
        self.config = FabricAgentConnector._create_config(
            ssh_config_file=ssh_config_file)
        self.user = user
        self.connect_kwargs = FabricAgentConnector._collect_connect_kwargs(
            identity_file)
        self.control_command = control_command
        self.connect_timeout = connect_timeout

    @classmethod
    def from_properties(cls, properties) -> 'FabricAgentConnector':
        return cls(ssh_config_file=properties.get("AGENT_SSH_CONFIG_FILE") or None,
                   user=properties.get("AGENT_SSH_USER") or None,
                   identity_file=properties.get("AGENT_IDENTITY_FILE") or None,
                   control_command=properties.get("AGENT_CONTROL_COMMAND"),
                   connect_timeout=properties.get_int("AGENT_CONNECT_TIMEOUT"))

    @staticmethod
    def _create_config(ssh_config_file=None):
        if ssh_config_file:
            ssh_config_file = os.path.expanduser(ssh_config_file)
            FabricAgentConnector._is_readable_file(ssh_config_file, 'ssh_config')
        return Config(runtime_ssh_path=ssh_config_file)

    @staticmethod
    def _is_readable_file(path, file_kind):
        if not isinstance(path, str):
            raise ValueError("path to file must be a string")

        if os.access(path, os.R_OK):
            if os.path.isfile(path):
                return
            else:
                raise OSError("Path is not to a file -- '%s'" % str(path))
        else:
            raise OSError("Unable to access the file (not readable) -- %s -- '%s'" % (file_kind, path))

    @staticmethod
    def _collect_connect_kwargs(identity_file):
        connect_kwargs = {}

        if identity_file:
            identity_file = os.path.expanduser(identity_file)
            FabricAgentConnector._is_readable_file(identity_file, 'identity_file')
            connect_kwargs['key_filename'] = identity_file

        if not connect_kwargs:
            connect_kwargs = None

        return connect_kwargs

    def open(self, agent):
        connection = Connection(agent.public_address, config=self.config,
                                user=self.user,
                                connect_timeout=self.connect_timeout,
                                connect_kwargs=self.connect_kwargs)
        try:
            connection.open()
        except (SSHException, socket.error) as e:
            connection.close()
            raise AgentCommunicationError(
                "Unable to connect to agent {}: {}".format(agent.public_address,
                                                           e)) from e
        return FabricAgentConnection(agent, connection, self.control_command)
