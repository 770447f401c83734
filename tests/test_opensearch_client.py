"""
Tests for the OpenSearch entity index client.
"""

import dataclasses
from unittest.mock import Mock

import pytest
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError

from graphchat.utils.config import config
from graphchat.utils.opensearch_client import OpenSearchClient, OpenSearchError


@pytest.fixture
def search_config():
    return dataclasses.replace(config.opensearch, dimension=3, index_name='entities_test')


def test_vector_search_returns_hits(search_config):
    backend = Mock()
    backend.search.return_value = {
        'hits': {
            'hits': [{
                '_id': '8',
                '_score': 0.87,
                '_source': {'entity_id': 8, 'name': 'Energy Trading', 'type': 'concept'}
            }]
        }
    }

    results = OpenSearchClient(search_config, client=backend).vector_search([0.1, 0.2, 0.3], top_k=4)

    assert results == [{'id': '8', 'score': 0.87, 'document': {'entity_id': 8, 'name': 'Energy Trading', 'type': 'concept'}}]
    kwargs = backend.search.call_args.kwargs
    assert kwargs['index'] == 'entities_test'
    assert kwargs['body']['query']['knn']['embedding'] == {'vector': [0.1, 0.2, 0.3], 'k': 4}


def test_dimension_mismatch(search_config):
    with pytest.raises(OpenSearchError):
        OpenSearchClient(search_config, client=Mock()).vector_search([0.1, 0.2], top_k=4)


def test_backend_errors_are_wrapped(search_config):
    backend = Mock()
    backend.search.side_effect = OpenSearchConnectionError('N/A', 'connection refused', None)

    with pytest.raises(OpenSearchError):
        OpenSearchClient(search_config, client=backend).vector_search([0.1, 0.2, 0.3])


def test_health_check(search_config):
    backend = Mock()
    backend.indices.exists.return_value = False
    assert OpenSearchClient(search_config, client=backend).health_check() is True
