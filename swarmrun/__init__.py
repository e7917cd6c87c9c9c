"""
swarmrun: Process Orchestration for Cooperating Agent Swarms.

A swarm is a set of agent instances that work one task together: a lead
instance launched in the foreground, and helpers it reaches through local
tool-call connections. Every agent is an opaque external process speaking
line-delimited JSON on stdout. This package spawns those processes, streams
and persists what they say, lets a later run resume them, and replays the
session log into a cost summary.
"""

__version__ = "0.4.0"
