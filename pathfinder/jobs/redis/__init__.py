from pathfinder.jobs.redis.broker import RedisBroker

__all__ = ["RedisBroker"]
