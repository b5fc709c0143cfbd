"""GenerationRequest - immutable payload needed to (re)generate a blueprint."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ProviderName = Literal["gemini", "openai"]


class PromptSegments(BaseModel):
    """System/user split of a prompt for providers that support roles."""

    system: str
    user: str


class GenerationRequest(BaseModel):
    """Everything a generation attempt needs, stored as JSON on jobs and blueprints."""

    prompt: str = Field(min_length=1)
    prompt_segments: Optional[PromptSegments] = None
    provider: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        """Serialize for a JSON column."""
        return self.model_dump(mode="json")
