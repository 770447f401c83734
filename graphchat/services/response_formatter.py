"""
Render graph results as conversational text plus re-displayable structure.
"""

from typing import List, Sequence

from ..models.core import Entity, FormattedResponse, PathNode

ERROR_MESSAGES = {
    'entity_not_found': "I couldn't find that entity in the knowledge graph. Please check the name and try again.",
    'no_path': "I couldn't find a connection between those entities. They may not be related in the available data.",
    'no_relationships': 'No relationships found for that entity.',
    'invalid_query': "I didn't understand that query. Please try rephrasing it.",
    'llm_error': "I'm having trouble processing your request right now. Please try again.",
    'timeout': 'The query is taking too long to process. Please try a simpler query or be more specific.',
    'database_error': "I'm having trouble accessing the knowledge graph. Please try again later.",
}


def _entity_line(index: int, entity: Entity) -> str:
    line = f'{index}. {entity.name} ({entity.type})'
    details = ', '.join(f'{key}: {value}' for key, value in sorted(entity.properties.items()) if value not in (None, ''))
    if details:
        return f'{line} - {details}'
    return line


class ResponseFormatter:
    """Pure formatting functions; holds no state."""

    def format_entities(self, entities: Sequence[Entity]) -> FormattedResponse:
        """Summarize a list of entities.

        Args:
            entities: Entities returned by the repository

        Returns:
            FormattedResponse whose `entities` mirrors the input
        """
        entities = list(entities)
        if not entities:
            return FormattedResponse(text='No entities found.', entities=[])

        noun = 'entity' if len(entities) == 1 else 'entities'
        lines = [f'Found {len(entities)} {noun}:']
        lines.extend(_entity_line(index, entity) for index, entity in enumerate(entities, start=1))
        return FormattedResponse(text='\n'.join(lines), entities=entities)

    def format_similar(self, entities: Sequence[Entity]) -> FormattedResponse:
        """Summarize semantic search hits, best match first."""
        entities = list(entities)
        if not entities:
            return FormattedResponse(text='No semantically similar entities found.', entities=[])

        noun = 'entity' if len(entities) == 1 else 'entities'
        lines = [f'Found {len(entities)} semantically similar {noun}:']
        lines.extend(_entity_line(index, entity) for index, entity in enumerate(entities, start=1))
        return FormattedResponse(text='\n'.join(lines), entities=entities)

    def format_path(self, path: Sequence[PathNode]) -> FormattedResponse:
        """Render a path as `A (type) --[REL]--> B (type)`."""
        path = list(path)
        if not path:
            return FormattedResponse(text='No connection found between these entities.', entities=[], path=[])

        parts: List[str] = []
        for index, node in enumerate(path):
            parts.append(f'{node.entity.name} ({node.entity.type})')
            if index < len(path) - 1:
                parts.append(f'--[{node.relationship or "RELATED_TO"}]-->')

        hops = len(path) - 1
        header = f'Connection found ({hops} hop{"" if hops == 1 else "s"}):'
        return FormattedResponse(text=f'{header}\n{" ".join(parts)}',
                                 entities=[node.entity for node in path],
                                 path=path)

    def format_count(self, count: int, description: str) -> FormattedResponse:
        text = f'Count: {count}'
        if description:
            text = f'{text}\n{description}'
        return FormattedResponse(text=text, entities=[])

    def format_error(self, kind: str, details: str = '') -> FormattedResponse:
        return FormattedResponse(text=build_error_message(kind, details), entities=[])


def build_error_message(kind: str, details: str = '') -> str:
    """Map a domain-level failure kind to user-facing text.

    Args:
        kind: One of the ERROR_MESSAGES keys; anything else gets a generic message
        details: Optional detail text appended verbatim

    Returns:
        User-facing message
    """
    message = ERROR_MESSAGES.get(kind, 'An unexpected error occurred.')
    if details:
        return f'{message}\n\nDetails: {details}'
    return message
