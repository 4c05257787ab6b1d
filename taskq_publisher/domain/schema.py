"""
Domain schemas for taskq-publisher.
Defines the publish request body and the metrics snapshot.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict


class PublishRequest(BaseModel):
    """
    Body of a ``POST /put`` request.

    ``payload`` holds the payload exactly as the client wrote it (any JSON
    value, ``null`` included). It is pushed to the queue byte for byte.
    """
    model_config = ConfigDict(extra='ignore', frozen=True)

    channel: str = Field(..., description="Destination Redis list name")
    payload: str = Field(..., description="Raw JSON text of the document to enqueue")


class PublishOutcome(str, Enum):
    """Result of a single publish attempt, as seen by the HTTP layer."""

    OK = "ok"
    INTERNAL_ERROR = "internal_error"

    @property
    def status_code(self) -> int:
        return 200 if self is PublishOutcome.OK else 500


class MetricsSnapshot(BaseModel):
    """Point-in-time copy of the process-wide counters."""
    model_config = ConfigDict(extra='forbid', frozen=True)

    index_hits: int = Field(default=0, ge=0)
    warnings: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    successes: int = Field(default=0, ge=0)
    put_requests: int = Field(default=0, ge=0)
    started_at: datetime = Field(..., description="Process start time (UTC)")
    queue_lengths: dict[str, int] = Field(
        default_factory=dict,
        description="Last observed length per watched queue"
    )
