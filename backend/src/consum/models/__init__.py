"""SQLModel database entities.

All table models are imported here to ensure they're registered with SQLModel metadata.
"""

from consum.models.blueprint import Blueprint, BlueprintStatus, InvalidStateTransition
from consum.models.generation_job import GenerationJob
from consum.models.generation_request import GenerationRequest, PromptSegments

__all__ = [
    "Blueprint",
    "BlueprintStatus",
    "InvalidStateTransition",
    "GenerationJob",
    "GenerationRequest",
    "PromptSegments",
]
