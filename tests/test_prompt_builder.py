"""
Tests for prompt templates and prompt assembly.
"""

from graphchat.services.prompt_builder import (FINAL_INSTRUCTION, build_disambiguation_prompt, build_query_prompt,
                                               default_prompt_template, make_prompt_template)


class TestTemplates:
    """Template construction."""

    def test_default_template_is_shared(self):
        assert default_prompt_template() is default_prompt_template()

    def test_default_template_lists_operations_and_schema(self):
        template = default_prompt_template()

        for action in ('entity_lookup', 'relationship', 'path_finding', 'semantic_search', 'aggregation', 'answer'):
            assert action in template.available_operations
        for type_name in ('person', 'organization', 'concept', 'SENT', 'RECEIVED', 'MENTIONS', 'COMMUNICATES_WITH'):
            assert type_name in template.schema

    def test_extra_types_extend_the_schema(self):
        template = make_prompt_template(entity_types={'project': 'Named internal projects'},
                                        relationship_types={'WORKS_ON': 'person -> project'})

        assert '- project: Named internal projects' in template.schema
        assert '- WORKS_ON: person -> project' in template.schema
        assert 'WORKS_ON' in template.available_operations
        assert 'WORKS_ON' not in default_prompt_template().schema


class TestQueryPrompt:
    """Full prompt assembly."""

    def test_prompt_includes_context_and_ends_with_instruction(self, context):
        context.add_turn('Who is Jeff Skilling?', 'Found 1 entity')
        context.track_entity('Jeff Skilling', 'person', 1)
        template = default_prompt_template()

        prompt = build_query_prompt(template, context, 'Who did he email?')

        assert prompt.startswith(template.system_role)
        assert template.response_format in prompt
        assert 'User: Who is Jeff Skilling?' in prompt
        assert 'Current query: Who did he email?' in prompt
        assert prompt.endswith(FINAL_INSTRUCTION)

    def test_sections_are_separated_by_blank_lines(self, context):
        prompt = build_query_prompt(default_prompt_template(), context, 'Who is Enron?')
        assert '\n\nCurrent query: Who is Enron?\n\n' in prompt


def test_disambiguation_prompt_numbers_options():
    text = build_disambiguation_prompt('Who is John?', ['first', 'second'])

    assert text.startswith("Your query 'Who is John?' could have multiple interpretations:")
    assert '1. first\n2. second' in text
    assert text.endswith('or rephrase your query to be more specific.')
