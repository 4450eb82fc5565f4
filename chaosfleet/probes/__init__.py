"""
Fleet 'probes' module.

Probes gather data about the state of the fleet without changing it: whether a
new instance is ready to be registered, whether a load balancer exists.
"""
