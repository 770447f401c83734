"""
Pytest configuration and fixtures for all tests
"""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

import graphchat
from graphchat.models.core import Entity
from graphchat.services.collaborators import EntityNotFoundError
from graphchat.services.conversation_context import ConversationContext
from graphchat.services.in_memory_repository import InMemoryRepository
from graphchat.services.query_handler import QueryHandler
from graphchat.services.stub_llm import StubLLMClient

SAMPLE_GRAPH = Path(graphchat.__file__).parent / 'data' / 'sample_graph.json'

JEFF = Entity(id=1, name='Jeff Skilling', type='person')
KENNETH = Entity(id=2, name='Kenneth Lay', type='person')
ANDREW = Entity(id=3, name='Andrew Fastow', type='person')
ENRON = Entity(id=5, name='Enron', type='organization')


@pytest.fixture
def context():
    """Fresh conversation context."""
    return ConversationContext()


@pytest.fixture
def mock_llm():
    """LLM collaborator whose completion is set per test via `envelope`."""
    llm = Mock()
    llm.generate_completion.return_value = json.dumps({'action': 'answer', 'answer': 'OK'})
    llm.generate_embedding.return_value = [0.1, 0.2, 0.3]
    return llm


def envelope(llm, **fields):
    """Make the mock LLM answer with one JSON action envelope."""
    llm.generate_completion.return_value = json.dumps(fields)


@pytest.fixture
def mock_repository():
    """Repository that knows Jeff Skilling, Kenneth Lay, Andrew Fastow and Enron by name."""
    known = {entity.name: entity for entity in (JEFF, KENNETH, ANDREW, ENRON)}

    def find_entity_by_name(name):
        if name not in known:
            raise EntityNotFoundError(name)
        return known[name]

    repository = Mock()
    repository.find_entity_by_name.side_effect = find_entity_by_name
    repository.traverse_relationships.return_value = []
    repository.find_shortest_path.return_value = []
    repository.similarity_search.return_value = []
    repository.count_relationships.return_value = 0
    return repository


@pytest.fixture
def handler(mock_llm, mock_repository):
    """QueryHandler wired to mock collaborators."""
    return QueryHandler(mock_llm, mock_repository)


@pytest.fixture
def stub_llm():
    return StubLLMClient()


@pytest.fixture
def sample_repository(stub_llm):
    """In-memory repository loaded from the bundled sample graph."""
    return InMemoryRepository.load_json(str(SAMPLE_GRAPH), embed=stub_llm.generate_embedding)
