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

__all__ = [
    "BackendType",
    "Job",
    "JobError",
    "JobHandle",
    "JobOptions",
    "JobPriority",
    "JobState",
    "JobStatus",
    "JobType",
    "QUEUE_CONFIGS",
    "QueueConfig",
    "QueueStats",
    "RecurringSchedule",
]
