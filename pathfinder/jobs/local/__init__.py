from pathfinder.jobs.local.broker import LocalBroker
from pathfinder.jobs.local.priority_queue import LocalPriorityQueue

__all__ = ["LocalBroker", "LocalPriorityQueue"]
