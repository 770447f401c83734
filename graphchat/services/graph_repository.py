"""
Graph repository backed by Amazon Neptune for structure and OpenSearch for similarity.
"""

from typing import Any, Dict, List

from ..models.core import Entity, PathNode
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient
from .collaborators import EntityNotFoundError

logger = get_logger(__name__)


def entity_from_document(document: Dict[str, Any], doc_id: str = '') -> Entity:
    """Convert an entity index document into an Entity."""
    properties = {key: value for key, value in document.items() if key not in ('entity_id', 'name', 'type')}
    return Entity(id=int(document.get('entity_id', doc_id or 0)),
                  name=str(document.get('name', '')),
                  type=str(document.get('type', '')),
                  properties=properties)


class GraphRepository:
    """Repository reading entities and relationships from Neptune and similar entities from OpenSearch."""

    def __init__(self, neptune_client: NeptuneClient, opensearch_client: OpenSearchClient):
        self.neptune_client = neptune_client
        self.opensearch_client = opensearch_client
        logger.info('Initialized GraphRepository')

    def find_entity_by_name(self, name: str) -> Entity:
        entity = self.neptune_client.find_entity_by_name(name)
        if entity is None:
            raise EntityNotFoundError(name)
        return entity

    def traverse_relationships(self, entity_id: int, rel_type: str) -> List[Entity]:
        return self.neptune_client.traverse_relationships(entity_id, rel_type)

    def find_shortest_path(self, source_id: int, target_id: int) -> List[PathNode]:
        return self.neptune_client.find_shortest_path(source_id, target_id)

    def count_relationships(self, entity_id: int, rel_type: str) -> int:
        return self.neptune_client.count_relationships(entity_id, rel_type)

    def similarity_search(self, embedding: List[float], limit: int) -> List[Entity]:
        results = self.opensearch_client.vector_search(embedding, top_k=limit)
        return [entity_from_document(result['document'], result['id']) for result in results]

    def health_check(self) -> bool:
        return self.neptune_client.health_check() and self.opensearch_client.health_check()

    def close(self) -> None:
        self.neptune_client.close()
