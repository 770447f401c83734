"""
Tests for conversation history, entity tracking, pronoun resolution and serialization.
"""

import json

import pytest

from graphchat.services.conversation_context import ConversationContext, ConversationContextError, contains_pronoun


class TestHistory:
    """Bounded turn history."""

    def test_history_keeps_last_five_turns_in_order(self, context):
        for index in range(8):
            context.add_turn(f'query {index}', f'response {index}')

        history = context.get_history()
        assert len(history) == 5
        assert [entry.query for entry in history] == [f'query {index}' for index in range(3, 8)]

    def test_custom_history_cap(self):
        context = ConversationContext(max_history=2)
        for index in range(4):
            context.add_turn(f'q{index}', f'r{index}')
        assert [entry.response for entry in context.get_history()] == ['r2', 'r3']

    def test_non_positive_cap_is_rejected(self):
        with pytest.raises(ValueError):
            ConversationContext(max_history=0)

    def test_get_history_returns_a_copy(self, context):
        context.add_turn('q', 'r')
        context.get_history().clear()
        assert len(context.get_history()) == 1


class TestEntityTracking:
    """Entity registry upserts and recency."""

    def test_repeated_name_does_not_grow_registry(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)
        context.track_entity('Jeff Skilling', 'organization', 7)

        tracked = context.get_tracked_entities()
        assert len(tracked) == 1
        assert tracked['Jeff Skilling'].type == 'organization'
        assert tracked['Jeff Skilling'].id == 7

    def test_last_mentioned_entity_on_empty_context(self, context):
        assert context.get_last_mentioned_entity() == (None, False)

    def test_retracking_makes_entity_most_recent(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)
        context.track_entity('Kenneth Lay', 'person', 2)
        context.track_entity('Jeff Skilling', 'person', 1)

        entity, found = context.get_last_mentioned_entity()
        assert found
        assert entity.name == 'Jeff Skilling'


class TestPronounResolution:
    """Pronoun detection and resolution."""

    def test_resolves_to_only_tracked_entity(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)

        entity, found = context.resolve_pronoun('What did he do?')
        assert found
        assert entity.name == 'Jeff Skilling'

    def test_resolves_to_most_recent_entity(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)
        context.track_entity('Kenneth Lay', 'person', 2)

        entity, found = context.resolve_pronoun('What did he do?')
        assert found
        assert entity.name == 'Kenneth Lay'

    def test_no_pronoun_means_no_resolution(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)
        assert context.resolve_pronoun('Who is Kenneth Lay?') == (None, False)

    def test_pronoun_without_tracked_entities(self, context):
        assert context.resolve_pronoun('Who did she email?') == (None, False)

    @pytest.mark.parametrize('text,expected', [
        ('Who did HE email?', True),
        ('Tell me about their emails', True),
        ('What is the theme?', False),
        ('Show me Chelsea', False),
    ])
    def test_pronouns_match_whole_words_only(self, text, expected):
        assert contains_pronoun(text) is expected


class TestPromptContext:
    """Rendering of the conversational block of the prompt."""

    def test_empty_context_renders_only_current_query(self, context):
        assert context.build_prompt_context('Who is Jeff Skilling?') == 'Current query: Who is Jeff Skilling?\n'

    def test_full_context_rendering(self, context):
        context.add_turn('Who is Jeff Skilling?', 'Found 1 entity')
        context.track_entity('Jeff Skilling', 'person', 1)

        text = context.build_prompt_context('Who did he email?')

        assert 'Previous conversation:\nUser: Who is Jeff Skilling?\nAssistant: Found 1 entity\n' in text
        assert 'Mentioned entities:\n- Jeff Skilling (person, ID: 1)\n' in text
        assert 'Note: Pronouns in the query likely refer to Jeff Skilling (person)' in text
        assert text.endswith('Current query: Who did he email?\n')

    def test_no_pronoun_note_without_pronoun(self, context):
        context.track_entity('Jeff Skilling', 'person', 1)
        assert 'Note:' not in context.build_prompt_context('Who is Kenneth Lay?')


class TestClearAndSerialization:
    """Clearing and the JSON round trip."""

    def test_clear_yields_empty_collections(self, context):
        context.add_turn('q', 'r')
        context.track_entity('Enron', 'organization', 5)

        context.clear()

        assert context.get_history() == []
        assert context.get_tracked_entities() == {}

    def test_round_trip_preserves_state(self, context):
        context.add_turn('Who is Jeff Skilling?', 'Found 1 entity')
        context.add_turn('Who did he email?', 'Found 2 entities')
        context.track_entity('Jeff Skilling', 'person', 1)
        context.track_entity('Kenneth Lay', 'person', 2)

        restored = ConversationContext()
        restored.deserialize(context.serialize())

        assert restored.get_history() == context.get_history()
        assert restored.get_tracked_entities() == context.get_tracked_entities()
        assert restored.get_last_mentioned_entity()[0].name == 'Kenneth Lay'

    def test_round_trip_keeps_history_cap(self):
        context = ConversationContext(max_history=3)
        restored = ConversationContext()
        restored.deserialize(context.serialize())
        assert restored.max_history == 3

    @pytest.mark.parametrize('payload', [
        b'not json',
        json.dumps({'history': [{'query': 'q'}]}).encode('utf-8'),
        json.dumps({'tracked_entities': {'x': {'name': 'x', 'type': 'person', 'id': 1, 'timestamp': 'yesterday'}}}).encode('utf-8'),
        json.dumps({'max_history': 0}).encode('utf-8'),
    ])
    def test_malformed_payload_leaves_context_unchanged(self, context, payload):
        context.add_turn('q', 'r')

        with pytest.raises(ConversationContextError):
            context.deserialize(payload)

        assert len(context.get_history()) == 1
