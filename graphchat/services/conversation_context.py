"""
Conversation context: bounded turn history and the registry of mentioned entities.
"""

import json
import re
from collections import deque
from typing import Dict, List, Optional, Tuple

from ..models.core import HistoryEntry, TrackedEntity
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import from_iso_str, to_datetime, to_iso_str

logger = get_logger(__name__)

MAX_HISTORY = 5

PRONOUNS = ('he', 'she', 'it', 'they', 'him', 'her', 'them', 'his', 'hers', 'their')

_PRONOUN_PATTERN = re.compile(r'\b(?:' + '|'.join(PRONOUNS) + r')\b', re.IGNORECASE)


class ConversationContextError(Exception):
    """Custom exception for conversation context errors."""
    pass


def contains_pronoun(text: str) -> bool:
    """Return True if text holds one of the tracked pronouns as a whole word."""
    return bool(_PRONOUN_PATTERN.search(text or ''))


class ConversationContext:
    """History and entity memory for one conversation.

    Not safe for concurrent mutation; hosts serialize access per conversation.
    """

    def __init__(self, max_history: int = MAX_HISTORY):
        if max_history < 1:
            raise ValueError(f'max_history must be positive, got {max_history}')
        self.max_history = max_history
        self._history: deque = deque(maxlen=max_history)
        # Insertion order doubles as recency order: upserts move the entry to the end
        self._entities: Dict[str, TrackedEntity] = {}

    def add_turn(self, query: str, response: str) -> None:
        """Record a completed turn, evicting the oldest one past the cap."""
        self._history.append(HistoryEntry(query=query, response=response, timestamp=to_datetime()))

    def get_history(self) -> List[HistoryEntry]:
        return list(self._history)

    def track_entity(self, name: str, entity_type: str, entity_id: int) -> None:
        """Upsert an entity by name, stamping it with the current time."""
        self._entities.pop(name, None)
        self._entities[name] = TrackedEntity(name=name, type=entity_type, id=entity_id, timestamp=to_datetime())

    def get_tracked_entities(self) -> Dict[str, TrackedEntity]:
        return dict(self._entities)

    def get_last_mentioned_entity(self) -> Tuple[Optional[TrackedEntity], bool]:
        """Return the most recently tracked entity.

        Returns:
            Tuple of (entity, found); ties on timestamp go to the latest upsert
        """
        if not self._entities:
            return None, False
        # max() keeps the first maximum, so scan newest first
        latest = max(reversed(list(self._entities.values())), key=lambda entity: entity.timestamp)
        return latest, True

    def resolve_pronoun(self, query: str) -> Tuple[Optional[TrackedEntity], bool]:
        """Resolve a pronoun in the query to the most recently mentioned entity.

        Args:
            query: Raw user query

        Returns:
            Tuple of (entity, found); found is False when the query holds no
            pronoun or nothing has been tracked yet
        """
        if not contains_pronoun(query):
            return None, False
        return self.get_last_mentioned_entity()

    def build_prompt_context(self, query: str) -> str:
        """Render history, tracked entities, the pronoun hint and the current query."""
        lines: List[str] = []

        if self._history:
            lines.append('Previous conversation:')
            for entry in self._history:
                lines.append(f'User: {entry.query}')
                lines.append(f'Assistant: {entry.response}')
            lines.append('')

        if self._entities:
            lines.append('Mentioned entities:')
            for entity in self._entities.values():
                lines.append(f'- {entity.name} ({entity.type}, ID: {entity.id})')
            lines.append('')

        resolved, found = self.resolve_pronoun(query)
        if found:
            lines.append(f'Note: Pronouns in the query likely refer to {resolved.name} ({resolved.type})')
            lines.append('')

        lines.append(f'Current query: {query}')
        return '\n'.join(lines) + '\n'

    def clear(self) -> None:
        """Forget all history and tracked entities."""
        self._history = deque(maxlen=self.max_history)
        self._entities = {}
        logger.debug('Conversation context cleared')

    def serialize(self) -> bytes:
        """Encode history, entity registry and history cap as JSON bytes."""
        data = {
            'history': [{
                'query': entry.query,
                'response': entry.response,
                'timestamp': to_iso_str(entry.timestamp)
            } for entry in self._history],
            'tracked_entities': {
                name: {
                    'name': entity.name,
                    'type': entity.type,
                    'id': entity.id,
                    'timestamp': to_iso_str(entity.timestamp)
                }
                for name, entity in self._entities.items()
            },
            'max_history': self.max_history
        }
        return json.dumps(data).encode('utf-8')

    def deserialize(self, data: bytes) -> None:
        """Replace this context's state with a `serialize` payload.

        Raises:
            ConversationContextError: If the payload is malformed; the context is left unchanged
        """
        try:
            payload = json.loads(data.decode('utf-8') if isinstance(data, (bytes, bytearray)) else data)
            max_history = int(payload.get('max_history', MAX_HISTORY))
            if max_history < 1:
                raise ValueError(f'invalid max_history {max_history}')

            history = deque(
                (HistoryEntry(query=item['query'], response=item['response'], timestamp=from_iso_str(item['timestamp']))
                 for item in payload.get('history') or []),
                maxlen=max_history)

            entities = {}
            for name, item in (payload.get('tracked_entities') or {}).items():
                entities[name] = TrackedEntity(name=item['name'],
                                               type=item['type'],
                                               id=int(item['id']),
                                               timestamp=from_iso_str(item['timestamp']))
        except (ValueError, KeyError, TypeError, AttributeError, UnicodeDecodeError) as e:
            logger.error(f'Failed to deserialize conversation context: {e}')
            raise ConversationContextError(f'Invalid conversation context payload: {e}')

        self.max_history = max_history
        self._history = history
        self._entities = entities
        logger.debug(f'Restored context with {len(history)} turns and {len(entities)} entities')
