from khidma.modules.jobs.models import (
    BroadcastPhase,
    Job,
    JobCancellation,
    JobCategorization,
    JobStatus,
    JobView,
)

__all__ = ["BroadcastPhase", "Job", "JobCancellation", "JobCategorization", "JobStatus", "JobView"]
