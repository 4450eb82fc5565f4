"""
Fleet 'actions' module.

This module contains *actions* that change the state of the fleet: scaling it
to a desired size (scale.py), binding its agents to a load balancer
(balancer.py) and broadcasting control messages to its agents (broadcast.py).

*Actions* take the agents registry, a cloud provider and/or an agent connector
as explicit arguments. None of them keeps state between calls; the registry
(and its agents file) is the only state shared between commands.

Things to consider when adding or modifying *actions*:
1. Persist registry changes before calling the provider with the new state.
2. Absorb and log per-agent failures; raise batch-wide ones.
3. *Actions* could/may be used outside of the run.py command line tool, for
   example from a chaos experiment. Keep them free of argument parsing and
   process exits.
"""
