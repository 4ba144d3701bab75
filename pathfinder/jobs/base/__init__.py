from pathfinder.jobs.base.broker import JobBroker

__all__ = ["JobBroker"]
