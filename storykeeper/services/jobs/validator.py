# storykeeper/services/jobs/validator.py
"""
Schema checks for background job payloads, run before anything is enqueued.
"""

import uuid
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class JobValidationError(Exception):
    """A job payload failed schema validation."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class RegenerateStoryTreesJob(BaseModel):
    """Payload of the regenerate-story-trees queue job."""

    model_config = ConfigDict(extra="forbid", strict=True)

    tenant_id: str = Field(..., min_length=1, max_length=64)
    job_id: str = Field(..., description="UUID generated per regeneration request")
    disable_commenting: bool = False
    disable_commenting_message: str | None = Field(default=None, max_length=500)

    @field_validator("tenant_id")
    @classmethod
    def tenant_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("tenant_id must not be blank")
        return v

    @field_validator("job_id")
    @classmethod
    def job_id_is_uuid(cls, v: str) -> str:
        try:
            uuid.UUID(v)
        except ValueError as e:
            raise ValueError(f"job_id is not a UUID: {v!r}") from e
        return v


@dataclass
class JobValidationResult:
    success: bool
    error: JobValidationError | None = None
    job: RegenerateStoryTreesJob | None = None


def _describe(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'payload'}: {err['msg']}" for err in e.errors()
    )


def validate_job_data(data: Any) -> JobValidationResult:
    """
    Validate a regenerate-story-trees payload.

    Never raises; a failure is returned with a JobValidationError describing
    every offending field.
    """
    if not isinstance(data, dict):
        return JobValidationResult(
            success=False,
            error=JobValidationError(f"payload must be an object, got {type(data).__name__}"),
        )

    try:
        job = RegenerateStoryTreesJob.model_validate(data)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_input=False)
        return JobValidationResult(success=False, error=JobValidationError(_describe(e), errors=errors))

    return JobValidationResult(success=True, job=job)
