"""Pathfinder: asynchronous route optimization on top of durable job queues."""

__version__ = "0.1.0"
