"""GenerationJob entity - pending retry of a blueprint generation."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from consum.core.timezone import utcnow
from consum.models.generation_request import GenerationRequest


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks the retry cycle of a single blueprint.

    At most one live job exists per blueprint (unique blueprint_id).
    """

    __tablename__ = "generation_jobs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    blueprint_id: UUID = Field(foreign_key="blueprints.id", unique=True, index=True)
    request_data: dict = Field(sa_column=Column(JSON, nullable=False))
    retry_count: int = Field(default=0, ge=0)
    next_retry_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    error_type: Optional[str] = Field(default=None, max_length=100)
    last_error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def request(self) -> GenerationRequest:
        """Typed view of request_data."""
        return GenerationRequest.model_validate(self.request_data)
