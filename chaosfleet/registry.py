"""
The agents registry.

The registry is the authoritative, ordered list of live agents. It is backed by
the agents file: one agent per line, formatted

    <public address>,<private address>

Insertion order is significant. The oldest agents are at the top of the file
and are the first candidates when the fleet is scaled down.

Every mutation rewrites the whole agents file before it returns, so the file
and the in memory list never disagree once a call has completed. A mutation
whose write fails raises PersistenceError and leaves the registry unchanged.
"""
import os
import random
import tempfile

from collections import namedtuple
from logzero import logger
from os.path import abspath, dirname, expanduser

from chaosfleet.common import SelectionStrategy
from chaosfleet.common.exceptions import PersistenceError, RegistryLoadError

from typing import Iterator, List

AgentRecord = namedtuple('AgentRecord', ['public_address', 'private_address'])


def format_agent(agent: AgentRecord) -> str:
    return "{},{}".format(agent.public_address, agent.private_address)


def parse_agent(line: str) -> AgentRecord:
    """
    Parse a single agents file line.

    :param line: A line without its trailing newline.
    :type line: str
    :return: AgentRecord
    :raises ValueError: if the line is not exactly two non-empty, comma
        separated addresses.
    """
    fields = [field.strip() for field in line.split(",")]
    if len(fields) != 2:
        raise ValueError("expected '<public address>,<private address>', "
                         "got '{}'".format(line))
    if not fields[0]:
        raise ValueError("missing public address in '{}'".format(line))
    if not fields[1]:
        raise ValueError("missing private address in '{}'".format(line))
    return AgentRecord(fields[0], fields[1])


class Registry(object):
    def __init__(self, path: str, agents: List[AgentRecord] = None):
        self.path = path
        self._agents = []
        for agent in agents or []:
            if agent not in self._agents:
                self._agents.append(agent)

    @classmethod
    def load(cls, path: str, must_exist: bool = True) -> 'Registry':
        """
        Load a registry from an agents file.

        Blank lines and lines starting with '#' are skipped. Duplicate lines
        collapse into a single agent (the first occurence wins).

        :param path: The relative or absolute path to the agents file.
            Required.
        :type path: str
        :param must_exist: Fail if the agents file does not exist? If False, a
            missing file yields an empty registry bound to path.
            Optional. (Default: True)
        :type must_exist: bool
        :return: Registry
        """
        expanded = expanduser(path)
        if not os.path.exists(expanded):
            if must_exist:
                raise RegistryLoadError(path, "file does not exist")
            logger.debug("Agents file %s does not exist. Starting with an "
                         "empty registry.", path)
            return cls(path)

        agents = []
        try:
            with open(expanded, 'r') as agentsfile:
                for line_number, line in enumerate(agentsfile, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    if line.startswith('#'):
                        logger.debug("Skipping comment on line %d of %s: %s",
                                     line_number, path, line)
                        continue
                    try:
                        agents.append(parse_agent(line))
                    except ValueError as e:
                        raise RegistryLoadError(path, str(e), line_number)
        except OSError as e:
            raise RegistryLoadError(path, str(e)) from e

        registry = cls(path, agents)
        logger.debug("Loaded %d agents from %s", registry.count(), path)
        return registry

    def save(self, path: str = None) -> None:
        """
        Write every agent to the agents file, replacing its content.

        The content is written to a temporary file in the same directory which
        then replaces the agents file, so a crash never leaves a half written
        agents file behind.

        :param path: Where to write. Optional. (Default: the registry's path)
        :type path: str
        :return: None
        """
        self._write(self._agents, path)

    def _write(self, agents: List[AgentRecord], path: str = None) -> None:
        target = abspath(expanduser(path or self.path))
        content = "".join(format_agent(agent) + "\n" for agent in agents)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".agents.",
                                            dir=dirname(target))
            with os.fdopen(fd, 'w') as tmpfile:
                tmpfile.write(content)
            os.replace(tmp_path, target)
            tmp_path = None
        except OSError as e:
            raise PersistenceError(
                "Unable to write agents file {}: {}".format(target, e)) from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
        logger.debug("Wrote %d agents to %s", len(agents), target)

    def add(self, agent: AgentRecord) -> bool:
        """
        Append an agent and persist the registry.

        Adding an agent that is already registered is a no-op.

        :return: bool True if the agent was added.
        """
        if agent in self._agents:
            logger.debug("Agent %s already registered", format_agent(agent))
            return False
        agents = self._agents + [agent]
        self._write(agents)
        self._agents = agents
        return True

    def remove(self, agent: AgentRecord) -> bool:
        """
        Remove an agent and persist the registry. No-op if it is not present.

        :return: bool True if the agent was removed.
        """
        if agent not in self._agents:
            return False
        agents = list(self._agents)
        agents.remove(agent)
        self._write(agents)
        self._agents = agents
        return True

    def take(self, count: int,
             strategy: SelectionStrategy = SelectionStrategy.FORWARD
             ) -> List[AgentRecord]:
        """
        Remove and return up to count agents, selected by strategy.

        If fewer than count agents are registered, all of them are removed and
        returned. The registry is persisted once, after the removal.

        :param count: How many agents to remove. Required.
        :type count: int
        :param strategy: How to pick the agents.
            Optional. (Default: SelectionStrategy.FORWARD - oldest first)
        :type strategy: SelectionStrategy
        :return: List[AgentRecord] in the order they were selected.
        """
        if count < 0:
            raise ValueError("count must not be negative, got {}".format(count))
        count = min(count, len(self._agents))
        if count == 0:
            return []

        if strategy == SelectionStrategy.FORWARD:
            selected = self._agents[:count]
        elif strategy == SelectionStrategy.REVERSE:
            selected = list(reversed(self._agents))[:count]
        elif strategy == SelectionStrategy.RANDOM:
            selected = random.sample(self._agents, count)
        else:
            raise ValueError("Unsupported selection strategy "
                             "{}".format(strategy))

        agents = [agent for agent in self._agents if agent not in selected]
        self._write(agents)
        self._agents = agents
        return selected

    def remove_oldest(self, count: int) -> List[AgentRecord]:
        return self.take(count, SelectionStrategy.FORWARD)

    def count(self) -> int:
        return len(self._agents)

    def agents(self) -> List[AgentRecord]:
        return list(self._agents)

    def public_addresses(self) -> List[str]:
        return [agent.public_address for agent in self._agents]

    def __len__(self):
        return len(self._agents)

    def __iter__(self) -> Iterator[AgentRecord]:
        return iter(list(self._agents))

    def __contains__(self, agent):
        return agent in self._agents

    def __repr__(self):
        return "Registry(path={!r}, agents={})".format(self.path,
                                                       len(self._agents))
