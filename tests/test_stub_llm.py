"""
Tests for the deterministic development LLM.
"""

import json
import math

from graphchat.services.collaborators import LLMClient
from graphchat.services.conversation_context import ConversationContext
from graphchat.services.prompt_builder import build_query_prompt, default_prompt_template
from graphchat.services.stub_llm import extract_current_query


def prompt_for(query, context=None):
    return build_query_prompt(default_prompt_template(), context or ConversationContext(), query)


class TestCompletion:
    """Envelopes derived from the current query."""

    def test_satisfies_llm_protocol(self, stub_llm):
        assert isinstance(stub_llm, LLMClient)

    def test_extracts_last_current_query(self):
        assert extract_current_query('Current query: first\nCurrent query: second\n') == 'second'
        assert extract_current_query('no query here') is None

    def test_entity_lookup_envelope(self, stub_llm):
        data = json.loads(stub_llm.generate_completion(prompt_for('Who is Jeff Skilling?')))
        assert data == {'action': 'entity_lookup', 'entity': 'Jeff Skilling'}

    def test_history_does_not_leak_into_query(self, stub_llm):
        context = ConversationContext()
        context.add_turn('How are Jeff Skilling and Kenneth Lay connected?', 'Connection found')

        data = json.loads(stub_llm.generate_completion(prompt_for('Emails about energy', context)))

        assert data == {'action': 'semantic_search', 'concept': 'energy'}

    def test_unmatched_query_gets_answer(self, stub_llm):
        data = json.loads(stub_llm.generate_completion(prompt_for('Summarize the quarter')))
        assert data['action'] == 'answer'
        assert 'Summarize the quarter' in data['answer']

    def test_prompt_without_query(self, stub_llm):
        assert json.loads(stub_llm.generate_completion(''))['action'] == 'answer'


class TestEmbedding:
    """Hashed bag-of-words vectors."""

    def test_vectors_are_normalized(self, stub_llm):
        vector = stub_llm.generate_embedding('Energy trading in California')
        assert len(vector) == 384
        assert math.isclose(sum(value * value for value in vector), 1.0)

    def test_empty_text_is_zero_vector(self, stub_llm):
        assert not any(stub_llm.generate_embedding('  '))

    def test_embedding_is_deterministic_and_case_insensitive(self, stub_llm):
        assert stub_llm.generate_embedding('Enron') == stub_llm.generate_embedding('enron')
