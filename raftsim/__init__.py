"""
raftsim: an in-process simulation of Raft leader election and log replication.

The library models a cluster of nodes that run randomized election timers,
request and grant votes, converge on a single leader per term, broadcast
heartbeats and propagate log entries. Nodes talk to each other only through
protocol messages, so the same node logic runs in-process or over a wire.
"""

__version__ = "0.1.0"
