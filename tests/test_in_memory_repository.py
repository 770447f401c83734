"""
Tests for the dictionary-backed graph repository.
"""

import pytest

from graphchat.models.core import Entity
from graphchat.services.collaborators import EntityNotFoundError, Repository
from graphchat.services.in_memory_repository import InMemoryRepository, InMemoryRepositoryError, entity_search_text


def names(entities):
    return [entity.name for entity in entities]


class TestLookupAndTraversal:
    """Name lookup, traversal and counting on the sample graph."""

    def test_satisfies_repository_protocol(self, sample_repository):
        assert isinstance(sample_repository, Repository)

    def test_lookup_is_case_insensitive(self, sample_repository):
        entity = sample_repository.find_entity_by_name('  jeff skilling ')
        assert entity.id == 1
        assert entity.properties['title'] == 'CEO'

    def test_missing_name_raises_not_found(self, sample_repository):
        with pytest.raises(EntityNotFoundError) as excinfo:
            sample_repository.find_entity_by_name('Atlantis')
        assert excinfo.value.name == 'Atlantis'

    def test_traverse_outgoing(self, sample_repository):
        assert names(sample_repository.traverse_relationships(1, 'sent')) == ['Kenneth Lay', 'Andrew Fastow']

    def test_symmetric_relationships_work_both_ways(self, sample_repository):
        assert names(sample_repository.traverse_relationships(2, 'COMMUNICATES_WITH')) == ['Jeff Skilling']

    def test_empty_type_follows_every_edge(self, sample_repository):
        related = names(sample_repository.traverse_relationships(1, ''))
        assert set(related) == {'Kenneth Lay', 'Andrew Fastow', 'Enron', 'Mark-to-Market Accounting'}

    def test_count(self, sample_repository):
        assert sample_repository.count_relationships(1, 'SENT') == 2
        assert sample_repository.count_relationships(1, 'RECEIVED') == 0


class TestShortestPath:
    """Breadth-first path search."""

    def test_multi_hop_path(self, sample_repository):
        path = sample_repository.find_shortest_path(1, 6)

        assert len(path) == 4
        assert path[0].entity.name == 'Jeff Skilling'
        assert path[-1].entity.name == 'Arthur Andersen'
        assert path[-1].relationship == ''
        assert all(node.relationship for node in path[:-1])

    def test_same_source_and_target(self, sample_repository):
        path = sample_repository.find_shortest_path(2, 2)
        assert names(node.entity for node in path) == ['Kenneth Lay']

    def test_unconnected_entities(self, sample_repository):
        sample_repository.add_entity(Entity(id=99, name='Island', type='concept'))
        assert sample_repository.find_shortest_path(1, 99) == []

    def test_unknown_ids(self, sample_repository):
        assert sample_repository.find_shortest_path(1, 12345) == []


class TestSimilarity:
    """Cosine similarity over indexed embeddings."""

    def test_search_ranks_matching_entities(self, sample_repository, stub_llm):
        found = names(sample_repository.similarity_search(stub_llm.generate_embedding('accounting'), 10))

        assert 'Arthur Andersen' in found
        assert 'Mark-to-Market Accounting' in found

    def test_limit_is_respected(self, sample_repository, stub_llm):
        assert len(sample_repository.similarity_search(stub_llm.generate_embedding('enron energy trading power'), 2)) <= 2

    def test_zero_vector_returns_nothing(self, sample_repository):
        assert sample_repository.similarity_search([0.0] * 384, 5) == []

    def test_entities_without_embeddings_are_skipped(self):
        repository = InMemoryRepository.from_dict({'entities': [{'id': 1, 'name': 'Enron', 'type': 'organization'}]})
        assert repository.similarity_search([1.0, 0.0], 5) == []


class TestLoading:
    """Building repositories from data."""

    def test_relationship_to_unknown_entity(self):
        with pytest.raises(InMemoryRepositoryError):
            InMemoryRepository.from_dict({
                'entities': [{'id': 1, 'name': 'Enron'}],
                'relationships': [{'source': 1, 'type': 'MENTIONS', 'target': 2}]
            })

    def test_malformed_entity(self):
        with pytest.raises(InMemoryRepositoryError):
            InMemoryRepository.from_dict({'entities': [{'name': 'No Id'}]})

    def test_missing_fixture_file(self, tmp_path):
        with pytest.raises(InMemoryRepositoryError):
            InMemoryRepository.load_json(str(tmp_path / 'missing.json'))

    def test_renaming_an_entity_replaces_its_name_index(self):
        repository = InMemoryRepository()
        repository.add_entity(Entity(id=1, name='Enron Corp', type='organization'))
        repository.add_entity(Entity(id=1, name='Enron', type='organization'))

        assert repository.find_entity_by_name('Enron').id == 1
        with pytest.raises(EntityNotFoundError):
            repository.find_entity_by_name('Enron Corp')


def test_search_text_includes_string_properties():
    entity = Entity(id=6, name='Arthur Andersen', type='organization', properties={'industry': 'audit', 'staff': 85000})
    assert entity_search_text(entity) == 'Arthur Andersen organization audit'
