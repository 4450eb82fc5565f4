#!/usr/bin/env python3

import sys
import argparse
import json
import logging
import signal
import threading

import logzero

from chaosfleet.actions.balancer import add_agents_to_balancer
from chaosfleet.actions.broadcast import (BoundedParallelStrategy,
                                          ControlDispatcher)
from chaosfleet.actions.scale import scale_instance_count_to
from chaosfleet.common import (DEFAULT_FLEET_AGENTS_FILE,
                               DEFAULT_FLEET_POLL_INTERVAL_SECONDS,
                               DEFAULT_FLEET_POLL_MAX_ATTEMPTS)
from chaosfleet.common.exceptions import FleetError
from chaosfleet.common.properties import FleetProperties
from chaosfleet.execute.execute import FabricAgentConnector, Message
from chaosfleet.provider.provider import Boto3Provider
from chaosfleet.registry import Registry, format_agent

logger = logging.getLogger(__name__)


LOG_LEVEL_HELP = """Logging level.
                      [LOG-LEVEL]: notset, debug, info, warning, error, critical
                      Default: info"""
levels = {
    'notset': logging.NOTSET,
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL
}


def log_level(v):
    if v.lower() in levels.keys():
        return levels[v.lower()]
    else:
        raise argparse.ArgumentTypeError(
            'Expected one of the following: {}.'.format(
                 ', '.join(levels.keys())))


def agent_count(v):
    try:
        count = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(
            'Expected a whole number of agents, got {}'.format(v))
    if count < 0:
        raise argparse.ArgumentTypeError(
            'The number of agents can not be negative, got {}'.format(count))
    return count


def json_payload(v):
    try:
        return json.loads(v)
    except ValueError as e:
        raise argparse.ArgumentTypeError('Invalid JSON payload. Reason: '
                                         '{}'.format(e))


def worker_count(v):
    try:
        count = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(
            'Expected a whole number of workers, got {}'.format(v))
    if count < 1:
        raise argparse.ArgumentTypeError(
            'At least one worker is required, got {}'.format(count))
    return count


SCALE_HELP = """Scale the fleet to COUNT agents. New instances are polled
                every POLL_INTERVAL_SECONDS (default: {}) at most
                POLL_MAX_ATTEMPTS (default: {}) times, so each new instance may
                take up to POLL_INTERVAL_SECONDS x POLL_MAX_ATTEMPTS seconds
                before it is given up on. Instances that time out are left
                running and are NOT added to the agents file.""".format(
                    DEFAULT_FLEET_POLL_INTERVAL_SECONDS,
                    DEFAULT_FLEET_POLL_MAX_ATTEMPTS)


def program_args():
    parser = argparse.ArgumentParser(
        description='Provision and control a fleet of load-test agents.')

    parser.add_argument('-p', '--properties', help='The fleet properties ' \
                        'file. Default: fleet.properties in the working ' \
                        'directory if it exists, built-in defaults otherwise.',
                        default=None)

    parser.add_argument('-a', '--agents-file', help='The agents file: one ' \
                        '\'<public address>,<private address>\' line per ' \
                        'agent. Default: {}'.format(DEFAULT_FLEET_AGENTS_FILE),
                        default=DEFAULT_FLEET_AGENTS_FILE)

    parser.add_argument('-l', '--log-level', type=log_level, nargs='?',
                        const=logging.INFO, default=logging.INFO,
                        help=LOG_LEVEL_HELP)

    subparsers = parser.add_subparsers(dest='command')
    subparsers.required = True

    scale = subparsers.add_parser('scale', help=SCALE_HELP)
    scale.add_argument('count', type=agent_count,
                       help='The desired number of agents.')

    balance = subparsers.add_parser('balance', help='Create the load ' \
                                    'balancer NAME unless it exists and add ' \
                                    'every agent to it.')
    balance.add_argument('name', help='The load balancer name.')

    broadcast = subparsers.add_parser('broadcast', help='Send a message to ' \
                                      'every agent. Fails if any agent does ' \
                                      'not acknowledge it; agents contacted ' \
                                      'before the failure keep the message.')
    broadcast.add_argument('message_type', help='The message type.')
    broadcast.add_argument('--payload', type=json_payload, default=None,
                           help='A JSON document sent along with the ' \
                           'message. Default: null')
    broadcast.add_argument('--parallel', type=worker_count, default=None,
                           help='Contact up to PARALLEL agents at the same ' \
                           'time. Default: one agent at a time.')

    subparsers.add_parser('list', help='Print the registered agents.')

    return parser


def parse_args(argv=None, parser=program_args()):
    return parser.parse_args(args=argv)


def init(args):
    # Log to stdout
    if not logger.handlers:
        ch = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        ch.setFormatter(formatter)
        logger.addHandler(ch)
    for handler in logger.handlers:
        handler.setLevel(args.log_level)

    logger.setLevel(args.log_level)
    logzero.loglevel(args.log_level)
    logger.debug("Initializing...")
    logger.debug("args: %s", args)


def install_signal_handlers(cancel_event):
    """
    Turn SIGINT and SIGTERM into a cancellation of readiness polling.

    :return: The previous handlers, keyed by signal number.
    """
    def handler(signum, frame):
        logger.warning("Received signal %s. Cancelling...", signum)
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, handler)
    return previous


def restore_signal_handlers(previous):
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def scale(args, properties, cancel_event=None):
    registry = Registry.load(args.agents_file, must_exist=False)
    provider = Boto3Provider.from_properties(properties)
    try:
        result = scale_instance_count_to(args.count, registry, provider,
                                         properties, cancel_event=cancel_event)
    finally:
        provider.shutdown()

    logger.info("Fleet has %d agent(s): %d added, %d removed",
                registry.count(), len(result.added), len(result.removed))
    if result.timed_out:
        logger.warning("Instance(s) %s did not become ready and must be "
                       "cleaned up manually", ", ".join(result.timed_out))
    if result.unresolved:
        logger.warning("Agent(s) %s were removed but no instance was found to "
                       "terminate", ", ".join(format_agent(agent)
                                              for agent in result.unresolved))
    return 0


def balance(args, properties):
    registry = Registry.load(args.agents_file)
    provider = Boto3Provider.from_properties(properties)
    try:
        instance_ids = add_agents_to_balancer(args.name, registry, provider,
                                              properties)
    finally:
        provider.shutdown()
    logger.info("Load balancer %s serves %d agent(s)", args.name,
                len(instance_ids))
    return 0


def broadcast(args, properties):
    registry = Registry.load(args.agents_file)
    logger.info("Loaded agents file: %s", registry.path)
    strategy = None
    if args.parallel:
        strategy = BoundedParallelStrategy(args.parallel)
    dispatcher = ControlDispatcher(registry,
                                   FabricAgentConnector.from_properties(properties),
                                   strategy=strategy)
    dispatcher.broadcast(Message(args.message_type, args.payload))
    return 0


def list_agents(args, properties):
    registry = Registry.load(args.agents_file)
    for agent in registry:
        print(format_agent(agent))
    logger.info("%d agent(s) registered in %s", registry.count(),
                registry.path)
    return 0


def describe_error(error):
    # Outermost error first, root cause last.
    causes = []
    while error is not None:
        causes.append(str(error) or error.__class__.__name__)
        error = error.__cause__
    return " <- ".join(causes)


def main(args):
    try:
        init(args)
    except Exception:
        logger.error('Unable to initialize script')
        raise

    cancel_event = threading.Event()
    try:
        properties = FleetProperties(args.properties)
        if args.command == 'scale':
            previous = install_signal_handlers(cancel_event)
            try:
                return scale(args, properties, cancel_event)
            finally:
                restore_signal_handlers(previous)
        elif args.command == 'balance':
            return balance(args, properties)
        elif args.command == 'broadcast':
            return broadcast(args, properties)
        else:
            return list_agents(args, properties)
    except FleetError as e:
        logger.error("Command %s failed: %s", args.command, describe_error(e))
        return 1


if __name__ == '__main__':
    sys.exit(main(parse_args()))
