from pathfinder.jobs.consumers.consumer import Consumer, ProgressReporter

__all__ = ["Consumer", "ProgressReporter"]
