from pathfinder.jobs.types.job_specs import (
    QUEUE_CONFIGS,
    BackendType,
    Job,
    JobError,
    JobHandle,
    JobOptions,
    JobPriority,
    JobState,
    JobStatus,
    JobType,
    QueueConfig,
    QueueStats,
    RecurringSchedule,
)
from pathfinder.jobs.base.broker import JobBroker
from pathfinder.jobs.local.broker import LocalBroker
from pathfinder.jobs.redis.broker import RedisBroker
from pathfinder.jobs.consumers.consumer import Consumer, ProgressReporter
from pathfinder.jobs.manager import QueueManager

__all__ = [
    "BackendType",
    "Consumer",
    "Job",
    "JobBroker",
    "JobError",
    "JobHandle",
    "JobOptions",
    "JobPriority",
    "JobState",
    "JobStatus",
    "JobType",
    "LocalBroker",
    "ProgressReporter",
    "QUEUE_CONFIGS",
    "QueueConfig",
    "QueueManager",
    "QueueStats",
    "RecurringSchedule",
    "RedisBroker",
]
