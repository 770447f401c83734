"""
OpenSearch client wrapper for entity vector similarity search.
"""

from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling.

    The entity index holds one document per graph entity with `entity_id`,
    `name`, `type` and a `knn_vector` field named `embedding`.
    """

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Pre-built OpenSearch client (created from config if None)
        """
        self.config = config
        self.index_name = config.index_name

        if client is None:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                endpoint = endpoint.split('://', 1)[1]

            client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                http_auth=auth,
                                use_ssl=True,
                                verify_certs=True,
                                connection_class=RequestsHttpConnection)
        self.client = client

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def vector_search(self, query_vector: List[float], top_k: int = 10) -> List[Dict[str, Any]]:
        """
        Perform k-NN similarity search over the entity index.

        Args:
            query_vector: Query vector for similarity search
            top_k: Number of results to return

        Returns:
            List of search results with ids, scores and documents, best first
        """
        if len(query_vector) != self.config.dimension:
            raise OpenSearchError(f'Query vector has {len(query_vector)} dimensions, index expects {self.config.dimension}')

        try:
            search_body = {
                'size': top_k,
                'query': {
                    'knn': {
                        'embedding': {
                            'vector': query_vector,
                            'k': top_k
                        }
                    }
                },
                '_source': {
                    'excludes': ['embedding']
                }
            }

            response = self.client.search(index=self.index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                results.append({'id': hit['_id'], 'score': hit['_score'], 'document': hit['_source']})

            logger.debug(f'Vector search returned {len(results)} results from {self.index_name}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
