"""
Dictionary-backed graph repository for development, demos and tests.
"""

import json
import math
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.core import Entity, PathNode
from ..utils.logging_config import get_logger
from .collaborators import EntityNotFoundError

logger = get_logger(__name__)

# Relationship types that hold in both directions
SYMMETRIC_TYPES = ('COMMUNICATES_WITH',)

MAX_PATH_DEPTH = 10


class InMemoryRepositoryError(Exception):
    """Custom exception for in-memory repository errors."""
    pass


class InMemoryRepository:
    """Graph repository over plain dictionaries.

    Names are matched case-insensitively. Traversals follow outgoing edges,
    plus incoming ones for symmetric relationship types; shortest paths ignore
    edge direction.
    """

    def __init__(self):
        self._entities: Dict[int, Entity] = {}
        self._ids_by_name: Dict[str, int] = {}
        self._edges: List[Tuple[int, str, int]] = []
        self._embeddings: Dict[int, List[float]] = {}

    def add_entity(self, entity: Entity, embedding: Optional[List[float]] = None) -> Entity:
        """Insert or replace an entity (keyed by id)."""
        previous = self._entities.get(entity.id)
        if previous is not None:
            self._ids_by_name.pop(previous.name.lower(), None)
        self._entities[entity.id] = entity
        self._ids_by_name[entity.name.lower()] = entity.id
        if embedding is not None:
            self._embeddings[entity.id] = list(embedding)
        return entity

    def add_relationship(self, source_id: int, rel_type: str, target_id: int) -> None:
        for entity_id in (source_id, target_id):
            if entity_id not in self._entities:
                raise InMemoryRepositoryError(f'Unknown entity id {entity_id}')
        self._edges.append((source_id, rel_type.upper(), target_id))

    def find_entity_by_name(self, name: str) -> Entity:
        entity_id = self._ids_by_name.get((name or '').strip().lower())
        if entity_id is None:
            raise EntityNotFoundError(name)
        return self._entities[entity_id]

    def _neighbors(self, entity_id: int, rel_type: str) -> List[int]:
        rel_type = (rel_type or '').upper()
        neighbor_ids: List[int] = []
        for source_id, edge_type, target_id in self._edges:
            if rel_type and edge_type != rel_type:
                continue
            if source_id == entity_id:
                neighbor_ids.append(target_id)
            elif target_id == entity_id and edge_type in SYMMETRIC_TYPES:
                neighbor_ids.append(source_id)
        return neighbor_ids

    def traverse_relationships(self, entity_id: int, rel_type: str) -> List[Entity]:
        seen = set()
        related = []
        for neighbor_id in self._neighbors(entity_id, rel_type):
            if neighbor_id not in seen:
                seen.add(neighbor_id)
                related.append(self._entities[neighbor_id])
        return related

    def count_relationships(self, entity_id: int, rel_type: str) -> int:
        return len(self._neighbors(entity_id, rel_type))

    def find_shortest_path(self, source_id: int, target_id: int) -> List[PathNode]:
        """Breadth-first search over edges in either direction, up to MAX_PATH_DEPTH hops."""
        if source_id not in self._entities or target_id not in self._entities:
            return []
        if source_id == target_id:
            return [PathNode(entity=self._entities[source_id])]

        adjacency: Dict[int, List[Tuple[str, int]]] = {}
        for edge_source, edge_type, edge_target in self._edges:
            adjacency.setdefault(edge_source, []).append((edge_type, edge_target))
            adjacency.setdefault(edge_target, []).append((edge_type, edge_source))

        parents: Dict[int, Tuple[int, str]] = {}
        queue = deque([(source_id, 0)])
        visited = {source_id}
        while queue:
            current, depth = queue.popleft()
            if depth >= MAX_PATH_DEPTH:
                continue
            for edge_type, neighbor in adjacency.get(current, []):
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                parents[neighbor] = (current, edge_type)
                if neighbor == target_id:
                    return self._build_path(parents, source_id, target_id)
                queue.append((neighbor, depth + 1))

        return []

    def _build_path(self, parents: Dict[int, Tuple[int, str]], source_id: int, target_id: int) -> List[PathNode]:
        path = [PathNode(entity=self._entities[target_id])]
        current = target_id
        while current != source_id:
            parent, edge_type = parents[current]
            path.insert(0, PathNode(entity=self._entities[parent], relationship=edge_type))
            current = parent
        return path

    def similarity_search(self, embedding: List[float], limit: int) -> List[Entity]:
        """Rank entities with stored embeddings by cosine similarity; non-positive scores are dropped."""
        query_norm = math.sqrt(sum(value * value for value in embedding))
        if query_norm == 0:
            return []

        scored = []
        for entity_id, vector in self._embeddings.items():
            norm = math.sqrt(sum(value * value for value in vector))
            if norm == 0 or len(vector) != len(embedding):
                continue
            score = sum(a * b for a, b in zip(embedding, vector)) / (query_norm * norm)
            if score > 0:
                scored.append((score, entity_id))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [self._entities[entity_id] for _, entity_id in scored[:limit]]

    def health_check(self) -> bool:
        return True

    @classmethod
    def from_dict(cls, data: Dict[str, Any], embed: Optional[Callable[[str], List[float]]] = None) -> 'InMemoryRepository':
        """Build a repository from `{"entities": [...], "relationships": [...]}`.

        Args:
            data: Entities as {id, name, type, properties} and relationships as {source, type, target}
            embed: Optional text embedder used to index entities for similarity search

        Raises:
            InMemoryRepositoryError: If an entry is malformed
        """
        repository = cls()
        try:
            for item in data.get('entities', []):
                entity = Entity(id=int(item['id']),
                                name=item['name'],
                                type=item.get('type', 'concept'),
                                properties=dict(item.get('properties') or {}))
                embedding = item.get('embedding')
                if embedding is None and embed is not None:
                    embedding = embed(entity_search_text(entity))
                repository.add_entity(entity, embedding)

            for item in data.get('relationships', []):
                repository.add_relationship(int(item['source']), item['type'], int(item['target']))
        except (KeyError, TypeError, ValueError) as e:
            raise InMemoryRepositoryError(f'Invalid graph data: {e}')

        logger.info(f'Loaded in-memory graph with {len(repository._entities)} entities and {len(repository._edges)} relationships')
        return repository

    @classmethod
    def load_json(cls, path: str, embed: Optional[Callable[[str], List[float]]] = None) -> 'InMemoryRepository':
        try:
            with open(path, encoding='utf-8') as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise InMemoryRepositoryError(f'Failed to load graph fixture {path}: {e}')
        return cls.from_dict(data, embed=embed)


def entity_search_text(entity: Entity) -> str:
    """Text indexed for an entity: its name, type and string-valued properties."""
    parts = [entity.name, entity.type]
    parts.extend(str(value) for value in entity.properties.values() if isinstance(value, str))
    return ' '.join(parts)
