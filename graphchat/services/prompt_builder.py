"""
Prompt templates and prompt assembly for the graph query LLM.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .conversation_context import ConversationContext

ENTITY_TYPES: Dict[str, str] = {
    'person': 'Individual people (e.g., employees, executives)',
    'organization': 'Companies, departments, groups',
    'concept': 'Topics, subjects, themes discussed in emails',
}

RELATIONSHIP_TYPES: Dict[str, str] = {
    'SENT': 'person -> email (person sent an email)',
    'RECEIVED': 'email -> person (person received an email)',
    'MENTIONS': 'email -> organization/concept (email mentions entity)',
    'COMMUNICATES_WITH': 'person <-> person (bidirectional communication)',
}

SYSTEM_ROLE = ('You are a graph database assistant helping users query a knowledge graph of email '
               'communications and the entities and relationships extracted from them.')

RESPONSE_FORMAT = """Response format:
- Respond with exactly one JSON object and nothing else: no prose, no code block markers
- Pick the single operation that answers the query; use "answer" only when no graph operation applies
- Replace pronouns with the entity names they refer to"""

FINAL_INSTRUCTION = 'Respond now with a single JSON action envelope for the current query.'


@dataclass(frozen=True)
class PromptTemplate:
    """Fixed sections of the graph query prompt."""
    system_role: str
    available_operations: str
    schema: str
    response_format: str


def _operations_section(relationship_types: Sequence[str]) -> str:
    rel_choices = '|'.join(relationship_types)
    return f"""Available query operations:
1. entity_lookup: Find detailed information about a specific person, organization, or concept
   - Use when: User asks "Who is X?", "What is Y?", "Tell me about Z"
   - Respond with: {{"action": "entity_lookup", "entity": "name"}}

2. relationship: Traverse the relationships of an entity
   - Use when: User asks "Who did X email?", "Who emailed X?", "What did X mention?"
   - Respond with: {{"action": "relationship", "entity": "name", "relationship": "{rel_choices}"}}

3. path_finding: Find how two entities are connected
   - Use when: User asks "How are X and Y connected?", "What's the relationship between X and Y?"
   - Respond with: {{"action": "path_finding", "source": "name1", "target": "name2"}}

4. semantic_search: Search for entities by concept
   - Use when: User asks "Emails about X", "Find discussions about Y"
   - Respond with: {{"action": "semantic_search", "concept": "search text"}}

5. aggregation: Count relationships of an entity
   - Use when: User asks "How many emails did X send?", "How many people did X email?"
   - Respond with: {{"action": "aggregation", "entity": "name", "relationship": "{rel_choices}"}}

6. answer: Reply directly when the query needs no graph operation
   - Respond with: {{"action": "answer", "answer": "your response"}}"""


def _schema_section(entity_types: Mapping[str, str], relationship_types: Mapping[str, str]) -> str:
    lines = ['Available entity types:']
    lines.extend(f'- {name}: {description}' if description else f'- {name}' for name, description in entity_types.items())
    lines.append('')
    lines.append('Available relationship types:')
    lines.extend(f'- {name}: {description}' if description else f'- {name}'
                 for name, description in relationship_types.items())
    return '\n'.join(lines)


def make_prompt_template(entity_types: Optional[Mapping[str, str]] = None,
                         relationship_types: Optional[Mapping[str, str]] = None) -> PromptTemplate:
    """Build a template for a graph whose schema includes additional (promoted) types.

    Args:
        entity_types: Entity type name -> description; extends the built-in types
        relationship_types: Relationship type name -> description; extends the built-in types

    Returns:
        A new PromptTemplate
    """
    entities = dict(ENTITY_TYPES)
    entities.update(entity_types or {})
    relationships = dict(RELATIONSHIP_TYPES)
    relationships.update(relationship_types or {})

    return PromptTemplate(system_role=SYSTEM_ROLE,
                          available_operations=_operations_section(list(relationships)),
                          schema=_schema_section(entities, relationships),
                          response_format=RESPONSE_FORMAT)


_DEFAULT_TEMPLATE = make_prompt_template()


def default_prompt_template() -> PromptTemplate:
    """Return the shared default template; the same object on every call."""
    return _DEFAULT_TEMPLATE


def build_query_prompt(template: PromptTemplate, context: ConversationContext, query: str) -> str:
    """Assemble the full prompt for one query.

    Args:
        template: Fixed prompt sections
        context: Conversation whose history and entities are rendered
        query: Current user query

    Returns:
        Prompt text ending with the JSON envelope instruction
    """
    sections: List[str] = [
        template.system_role,
        template.available_operations,
        template.schema,
        template.response_format,
        context.build_prompt_context(query).rstrip('\n'),
        FINAL_INSTRUCTION,
    ]
    return '\n\n'.join(sections)


def build_disambiguation_prompt(query: str, options: Sequence[str]) -> str:
    """Ask the user to choose between interpretations of an ambiguous query."""
    lines = [f"Your query '{query}' could have multiple interpretations:", '']
    lines.extend(f'{index}. {option}' for index, option in enumerate(options, start=1))
    lines.append('')
    lines.append('Please specify which interpretation you meant, or rephrase your query to be more specific.')
    return '\n'.join(lines)
