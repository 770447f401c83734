"""
Capability interfaces the query engine consumes: the graph repository and the LLM.
"""

from typing import List, Protocol, runtime_checkable

from ..models.core import Entity, PathNode


class EntityNotFoundError(Exception):
    """Raised by repositories when no entity matches a name."""

    def __init__(self, name: str):
        super().__init__(f'entity not found: {name}')
        self.name = name


@runtime_checkable
class Repository(Protocol):
    """Read interface over the persisted knowledge graph."""

    def find_entity_by_name(self, name: str) -> Entity:
        """Raises EntityNotFoundError if no entity has this name."""
        ...

    def traverse_relationships(self, entity_id: int, rel_type: str) -> List[Entity]:
        """Entities reached over `rel_type` edges; empty when there are none."""
        ...

    def find_shortest_path(self, source_id: int, target_id: int) -> List[PathNode]:
        """Shortest path from source to target; empty when they are not connected."""
        ...

    def similarity_search(self, embedding: List[float], limit: int) -> List[Entity]:
        ...

    def count_relationships(self, entity_id: int, rel_type: str) -> int:
        ...


@runtime_checkable
class LLMClient(Protocol):
    """Language-model interface; retries and provider selection live behind it."""

    def generate_completion(self, prompt: str) -> str:
        ...

    def generate_embedding(self, text: str) -> List[float]:
        ...
