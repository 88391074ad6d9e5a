"""Background job payload schemas."""

from storykeeper.services.jobs.validator import (
    JobValidationError,
    JobValidationResult,
    RegenerateStoryTreesJob,
    validate_job_data,
)

__all__ = [
    "JobValidationError",
    "JobValidationResult",
    "RegenerateStoryTreesJob",
    "validate_job_data",
]
