from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field


class BackendType(str, Enum):
    LOCAL = "local"
    REDIS = "redis"


class JobType(str, Enum):
    """The fixed set of job types. Each type maps 1:1 to a queue of the same name."""

    ROUTE_OPTIMIZATION = "route:optimization"
    NOTIFICATION_SEND = "notification:send"
    NOTIFICATION_SCHEDULE = "notification:schedule"
    DATA_CLEANUP = "data:cleanup"
    ANALYTICS_PROCESS = "analytics:process"
    USER_ANALYTICS = "user:analytics"
    LOCATION_CLEANUP = "location:cleanup"
    SESSION_CLEANUP = "session:cleanup"
    EMAIL_SEND = "email:send"
    CACHE_WARM = "cache:warm"
    BACKUP_DATABASE = "backup:database"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


class JobPriority(IntEnum):
    """Scheduling priority. Lower values are claimed sooner."""

    HIGH = 1
    NORMAL = 5
    LOW = 10


class JobOptions(BaseModel):
    """Per-call enqueue options. Unset fields fall back to the queue's ``QueueConfig``."""

    priority: Optional[int] = None
    delay: float = Field(default=0.0, ge=0, description="Seconds before the job becomes eligible for claiming.")
    max_attempts: Optional[int] = Field(default=None, ge=1)
    backoff_ms: Optional[int] = Field(default=None, ge=0)
    job_id: Optional[str] = None


class QueueConfig(BaseModel):
    """Defaults for one queue: priority, retry attempts and how many finished jobs are retained."""

    priority: int = JobPriority.NORMAL
    attempts: int = Field(default=3, ge=1)
    keep_completed: int = Field(default=100, ge=0)
    keep_failed: int = Field(default=50, ge=0)


QUEUE_CONFIGS: dict[JobType, QueueConfig] = {
    JobType.ROUTE_OPTIMIZATION: QueueConfig(priority=5, attempts=3, keep_completed=50, keep_failed=20),
    JobType.NOTIFICATION_SEND: QueueConfig(priority=1, attempts=5, keep_completed=100, keep_failed=50),
    JobType.NOTIFICATION_SCHEDULE: QueueConfig(priority=5, attempts=3, keep_completed=100, keep_failed=50),
    JobType.DATA_CLEANUP: QueueConfig(priority=10, attempts=2, keep_completed=10, keep_failed=10),
    JobType.ANALYTICS_PROCESS: QueueConfig(priority=10, attempts=2, keep_completed=20, keep_failed=10),
    JobType.USER_ANALYTICS: QueueConfig(priority=10, attempts=2, keep_completed=20, keep_failed=10),
    JobType.LOCATION_CLEANUP: QueueConfig(priority=10, attempts=2, keep_completed=10, keep_failed=10),
    JobType.SESSION_CLEANUP: QueueConfig(priority=10, attempts=2, keep_completed=10, keep_failed=10),
    JobType.EMAIL_SEND: QueueConfig(priority=1, attempts=5, keep_completed=100, keep_failed=50),
    JobType.CACHE_WARM: QueueConfig(priority=10, attempts=1, keep_completed=10, keep_failed=10),
    JobType.BACKUP_DATABASE: QueueConfig(priority=1, attempts=3, keep_completed=10, keep_failed=10),
}


class JobError(BaseModel):
    """Error detail recorded on a failed (or retrying) job. Never carries a traceback."""

    kind: str
    message: str
    status_code: Optional[int] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "JobError":
        return cls(
            kind=getattr(error, "kind", type(error).__name__),
            message=str(getattr(error, "message", "") or error),
            status_code=getattr(error, "status_code", None),
        )


class Job(BaseModel):
    """A job instance owned by a broker. Timestamps are integer milliseconds since the epoch.

    ``claim_token`` identifies the current claim while the job is active. It changes on every claim and is cleared
    when the job leaves ``active``.
    """

    id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = JobPriority.NORMAL
    state: JobState = JobState.WAITING
    progress: int = 0
    attempts: int = 0
    max_attempts: int = 1
    backoff_ms: int = 0
    seq: int = 0
    created_at: int
    run_at: Optional[int] = None
    processed_at: Optional[int] = None
    finished_at: Optional[int] = None
    lease_until: Optional[int] = None
    claim_token: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    repeat_key: Optional[str] = None

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False


class RecurringSchedule(BaseModel):
    """A registered cron producer. Each fire materializes an independent job."""

    id: str
    cron: str
    payload: dict[str, Any] = Field(default_factory=dict)
    options: JobOptions = Field(default_factory=JobOptions)
    next_run: int


class JobHandle(BaseModel):
    id: str


class JobStatus(BaseModel):
    id: str
    state: JobState
    progress: int = 0
    attempts: int = 0
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatus":
        return cls(
            id=job.id,
            state=job.state,
            progress=job.progress,
            attempts=job.attempts,
            result=job.result,
            error=job.error,
        )
