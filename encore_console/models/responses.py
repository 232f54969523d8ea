"""Response models."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, Literal, Optional
from datetime import datetime


class HealthResponse(BaseModel):
    """Gateway health report."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str
    timestamp: datetime
    encore_api_url: str
    has_token: bool
    auth_method: Literal["static", "osc-dynamic", "none"]


class ErrorResponse(BaseModel):
    """Error envelope returned by the gateway."""
    error: str
    details: Optional[Any] = None
    message: Optional[str] = None


class StatusCounts(BaseModel):
    """Number of jobs per status."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int = 0
    new: int = 0
    queued: int = 0
    in_progress: int = 0
    successful: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def counted(self) -> int:
        """Sum of the per-status counts."""
        return (
            self.new + self.queued + self.in_progress
            + self.successful + self.failed + self.cancelled
        )
