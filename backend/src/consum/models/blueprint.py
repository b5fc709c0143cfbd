"""Blueprint entity - AI-generated habit blueprint with generation status."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from consum.core.timezone import utcnow
from consum.models.generation_request import GenerationRequest


class BlueprintStatus(str, Enum):
    """Blueprint generation status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid blueprint state transition."""

    pass


class Blueprint(SQLModel, table=True):
    """Blueprint owned by a user, generated asynchronously from long-form content."""

    __tablename__ = "blueprints"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    goal: Optional[str] = Field(default=None)
    content_source: str
    content_type: str = Field(max_length=20)  # "youtube" or "text"
    title: Optional[str] = Field(default=None, max_length=500)
    status: BlueprintStatus = Field(default=BlueprintStatus.PENDING, index=True)
    ai_output: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    request_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def generation_request(self) -> GenerationRequest | None:
        """Stored regeneration payload, if any."""
        if not self.request_data:
            return None
        return GenerationRequest.model_validate(self.request_data)

    def mark_completed(self, payload: dict[str, Any]) -> None:
        """Transition from pending to completed.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != BlueprintStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. "
                "Blueprint must be in pending state."
            )
        self.status = BlueprintStatus.COMPLETED
        self.ai_output = payload
        self.updated_at = utcnow()

    def mark_failed(self) -> None:
        """Transition from pending to failed.

        Raises:
            InvalidStateTransition: If current status is not pending
        """
        if self.status != BlueprintStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark failed from {self.status.value}. Blueprint must be in pending state."
            )
        self.status = BlueprintStatus.FAILED
        self.updated_at = utcnow()

    def reset_for_retry(self, request: GenerationRequest | None = None) -> None:
        """Move a failed (or stuck pending) blueprint back to pending.

        Args:
            request: Optional replacement regeneration payload

        Raises:
            InvalidStateTransition: If the blueprint already completed
        """
        if self.status == BlueprintStatus.COMPLETED:
            raise InvalidStateTransition(
                "Cannot retry a completed blueprint. Create a new blueprint instead."
            )
        self.status = BlueprintStatus.PENDING
        self.ai_output = None
        if request is not None:
            self.request_data = request.to_json()
        self.updated_at = utcnow()
