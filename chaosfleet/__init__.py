"""
chaosfleet module

This module contains:
 - actions that change the state of a load-test fleet: scaling the fleet,
   binding agents to a load balancer and broadcasting control messages
   (actions directory)
 - probes that gather data/information about fleet state, such as instance
   readiness and balancer existence (probes directory)
 - the agents registry, the authoritative list of live agents (registry.py)
 - the cloud provider binding built on boto3 (provider directory)
 - an agent connection layer built on Python Fabric (execute directory)
 - common files: defaults, exceptions and properties (common directory)

The registry is the single source of truth for "which agents exist". It is
persisted to the agents file after every mutation, so any command may be
abandoned half way and resumed later. The provider's own instance list is only
consulted when an agent's public address has to be resolved to an instance id.

Things to consider when adding or modifying actions and/or probes:
1. Registry mutations must be persisted before any provider call that assumes
   the new state. A scale-down removes agents from the registry before their
   instances are terminated, never the other way round.
2. Per-agent problems (an instance that never becomes ready, an address that
   does not resolve) are logged as warnings and the rest of the batch goes on.
   Problems with a whole batch call are raised to the caller.
3. Nothing here is safe to run concurrently against the same agents file or
   balancer name. Serialize commands externally.
"""
