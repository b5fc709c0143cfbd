"""Repository layer for the Consum backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from consum.repositories.blueprint import BlueprintRepository
from consum.repositories.generation_job import GenerationJobRepository

__all__ = [
    "BlueprintRepository",
    "GenerationJobRepository",
]
