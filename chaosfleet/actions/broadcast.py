"""
Broadcast a control message to every registered agent.

Delivery is at most once per agent and is not transactional across the fleet:
when an agent fails, agents that already got the message keep it. The caller
only learns that the broadcast failed and which agent failed first, and should
assume the fleet is in a partial state. Only broadcast messages that are safe
to send again.
"""
import threading

from concurrent.futures import ThreadPoolExecutor
from logzero import logger

from chaosfleet.common.exceptions import DispatchError
from chaosfleet.execute.execute import AgentConnector, Message
from chaosfleet.registry import AgentRecord, Registry, format_agent

from typing import List


class SequentialStrategy(object):
    """
    Contact agents one at a time, in registry order. Stop at the first failure.

    Connections stay open until every agent has been handled and are closed
    afterwards, whatever the outcome.
    """

    def deliver(self, agents: List[AgentRecord], connector: AgentConnector,
                message: Message) -> int:
        connections = []
        try:
            for agent in agents:
                try:
                    connection = connector.open(agent)
                    connections.append(connection)
                    connection.send(message)
                except Exception as e:
                    raise DispatchError(agent, e) from e
                logger.debug("Message %s delivered to %s",
                             message.message_type, format_agent(agent))
        finally:
            for connection in connections:
                try:
                    connection.close()
                except Exception as e:
                    logger.warning("Failed to close connection to %s: %s",
                                   connection.agent.public_address, e)
        return len(agents)


class BoundedParallelStrategy(object):
    """
    Contact up to max_workers agents at the same time.

    Once any agent has failed, deliveries that have not started yet are
    skipped. The failure reported is the first failing agent in registry
    order.
    """

    def __init__(self, max_workers: int):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    @staticmethod
    def _deliver_one(agent, connector, message, failed):
        if failed.is_set():
            return False
        try:
            with connector.open(agent) as connection:
                connection.send(message)
        except Exception:
            failed.set()
            raise
        return True

    def deliver(self, agents, connector, message):
        failed = threading.Event()
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._deliver_one, agent, connector,
                                   message, failed)
                       for agent in agents]

        delivered = 0
        for agent, future in zip(agents, futures):
            error = future.exception()
            if error is not None:
                raise DispatchError(agent, error) from error
            if future.result():
                delivered += 1
        return delivered


class ControlDispatcher(object):
    def __init__(self, registry: Registry, connector: AgentConnector,
                 strategy=None):
        self.registry = registry
        self.connector = connector
        self.strategy = strategy or SequentialStrategy()

    def broadcast(self, message: Message) -> int:
        """
        Send message to every registered agent.

        :param message: The message to send. Required.
        :type message: Message
        :return: int The number of agents that received the message.
        :raises DispatchError: naming the first agent that failed.
        """
        agents = self.registry.agents()
        if not agents:
            logger.warning("No agents registered in %s. Nothing to send.",
                           self.registry.path)
            return 0

        logger.info("Sending message %s to %d agent(s)", message.message_type,
                    len(agents))
        delivered = self.strategy.deliver(agents, self.connector, message)
        logger.info("Message sent!")
        return delivered
