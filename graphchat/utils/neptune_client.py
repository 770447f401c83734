"""
Amazon Neptune graph database client with Gremlin Python driver and AWS SigV4 authentication.

Entities are `Entity` vertices carrying `entity_id`, `name` and `type` properties;
relationships are edges labelled with their relationship type (e.g. `SENT`).
"""

from functools import wraps
from typing import Any, Dict, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import T

from ..models.core import Entity, PathNode
from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)

ENTITY_LABEL = 'Entity'

# Relationship types that hold in both directions
SYMMETRIC_TYPES = ('COMMUNICATES_WITH',)

MAX_PATH_DEPTH = 10

_RESERVED_KEYS = ('entity_id', 'name', 'type')


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def entity_from_element_map(data: Dict[Any, Any]) -> Entity:
    """Convert a Gremlin `element_map()` of an entity vertex into an Entity."""
    properties = {
        key: value
        for key, value in data.items()
        if isinstance(key, str) and key not in _RESERVED_KEYS
    }
    return Entity(id=int(data.get('entity_id', data.get(T.id, 0))),
                  name=str(data.get('name', '')),
                  type=str(data.get('type', data.get(T.label, ''))),
                  properties=properties)


def path_from_objects(objects: List[Dict[Any, Any]]) -> List[PathNode]:
    """Convert alternating vertex/edge element maps of a Gremlin path into PathNodes."""
    nodes: List[PathNode] = []
    for index in range(0, len(objects), 2):
        relationship = ''
        if index + 1 < len(objects):
            relationship = str(objects[index + 1].get(T.label, ''))
        nodes.append(PathNode(entity=entity_from_element_map(objects[index]), relationship=relationship))
    return nodes


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Signed headers authenticate the WebSocket upgrade request
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    def _entity(self, entity_id: int):
        return self.g.V().has(ENTITY_LABEL, 'entity_id', entity_id)

    @retry_on_connection_error
    def find_entity_by_name(self, name: str) -> Optional[Entity]:
        """
        Find an entity vertex by its exact name.

        Args:
            name: Entity name

        Returns:
            The matching Entity, or None if no vertex has that name
        """
        results = self.g.V().has(ENTITY_LABEL, 'name', name).limit(1).element_map().to_list()
        if not results:
            logger.debug(f"No entity vertex named '{name}'")
            return None
        return entity_from_element_map(results[0])

    @retry_on_connection_error
    def traverse_relationships(self, entity_id: int, rel_type: str, limit: int = 100) -> List[Entity]:
        """
        Get entities one hop away over edges of a relationship type.

        Args:
            entity_id: Starting entity ID
            rel_type: Edge label to follow (any label when empty)
            limit: Maximum number of entities returned

        Returns:
            Distinct related entities
        """
        rel_type = (rel_type or '').upper()
        start = self._entity(entity_id)
        if not rel_type:
            step = start.out()
        elif rel_type in SYMMETRIC_TYPES:
            step = start.both(rel_type)
        else:
            step = start.out(rel_type)

        results = step.dedup().limit(limit).element_map().to_list()
        logger.debug(f'Traversed {len(results)} {rel_type or "any"} relationships from entity {entity_id}')
        return [entity_from_element_map(data) for data in results]

    @retry_on_connection_error
    def count_relationships(self, entity_id: int, rel_type: str) -> int:
        """Count outgoing edges of a relationship type (all types when empty)."""
        rel_type = (rel_type or '').upper()
        start = self._entity(entity_id)
        if not rel_type:
            edges = start.out_e()
        elif rel_type in SYMMETRIC_TYPES:
            edges = start.both_e(rel_type)
        else:
            edges = start.out_e(rel_type)
        return int(edges.count().next())

    @retry_on_connection_error
    def find_shortest_path(self, source_id: int, target_id: int, max_depth: int = MAX_PATH_DEPTH) -> List[PathNode]:
        """
        Find the shortest path between two entities, ignoring edge direction.

        Args:
            source_id: Source entity ID
            target_id: Target entity ID
            max_depth: Maximum number of hops searched

        Returns:
            Path nodes from source to target, or an empty list if unconnected
        """
        if source_id == target_id:
            results = self._entity(source_id).element_map().to_list()
            return [PathNode(entity=entity_from_element_map(results[0]))] if results else []

        paths = self._entity(source_id)\
            .repeat(__.both_e().other_v().simple_path())\
            .until(__.has('entity_id', target_id).or_().loops().is_(max_depth))\
            .has('entity_id', target_id)\
            .limit(1)\
            .path().by(__.element_map())\
            .to_list()

        if not paths:
            logger.debug(f'No path between entities {source_id} and {target_id}')
            return []
        return path_from_objects(list(paths[0].objects))

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        self.g.V().limit(1).count().next()
        return True
