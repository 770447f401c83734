"""
Core data models for the conversational graph query engine.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Intents produced by the pattern matcher
ENTITY_LOOKUP = 'entity_lookup'
RELATIONSHIP = 'relationship'
PATH_FINDING = 'path_finding'
CONCEPT_SEARCH = 'concept_search'
AGGREGATION = 'aggregation'
AMBIGUOUS = 'ambiguous'
UNKNOWN = 'unknown'

# Envelope action names and their accepted aliases, keyed by canonical action
ACTION_ALIASES = {
    'entity_lookup': ('entity_lookup', 'lookup'),
    'relationship': ('relationship', 'traverse'),
    'path_finding': ('path_finding', 'find_path'),
    'semantic_search': ('semantic_search', 'concept_search'),
    'aggregation': ('aggregation', 'count'),
    'answer': ('answer',),
}


@dataclass(frozen=True)
class HistoryEntry:
    """One completed conversation turn."""
    query: str
    response: str
    timestamp: datetime


@dataclass
class TrackedEntity:
    """An entity referenced earlier in the conversation."""
    name: str
    type: str
    id: int
    timestamp: datetime


@dataclass
class Entity:
    """Read-only projection of a graph entity."""
    id: int
    name: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PathNode:
    """A step on a graph path; relationship is empty for the terminal node."""
    entity: Entity
    relationship: str = ''


@dataclass
class MatchResult:
    """Output of the deterministic pattern matcher."""
    intent: str
    args: Dict[str, str] = field(default_factory=dict)
    ambiguous: bool = False
    options: List[str] = field(default_factory=list)


@dataclass
class ActionEnvelope:
    """Structured action an LLM is instructed to return.

    `relationship` also accepts the `rel_type` key and `concept` the `text` key,
    both of which models emit for the same fields.
    """
    action: str
    entity: Optional[str] = None
    relationship: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    concept: Optional[str] = None
    answer: Optional[str] = None
    direction: Optional[str] = None
    entity_type: Optional[str] = None

    @property
    def canonical_action(self) -> Optional[str]:
        """Return the canonical action name, or None when the action is not supported."""
        action = (self.action or '').strip().lower()
        for canonical, aliases in ACTION_ALIASES.items():
            if action in aliases:
                return canonical
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionEnvelope':
        """Build an envelope from a decoded LLM JSON object."""

        def text_field(*keys: str) -> Optional[str]:
            for key in keys:
                value = data.get(key)
                if value is None:
                    continue
                value = str(value).strip()
                if value:
                    return value
            return None

        action = text_field('action')
        answer = data.get('answer')
        if answer is not None:
            answer = answer if isinstance(answer, str) else json.dumps(answer)
        if action is None and answer:
            action = 'answer'

        return cls(action=action or '',
                   entity=text_field('entity', 'name'),
                   relationship=text_field('relationship', 'rel_type'),
                   source=text_field('source'),
                   target=text_field('target'),
                   concept=text_field('concept', 'text'),
                   answer=answer,
                   direction=text_field('direction'),
                   entity_type=text_field('entity_type'))

    @classmethod
    def from_match(cls, match: MatchResult) -> Optional['ActionEnvelope']:
        """Translate a pattern match into an envelope; None for ambiguous or unknown queries."""
        args = match.args
        if match.intent == ENTITY_LOOKUP:
            return cls(action='entity_lookup', entity=args.get('name'))
        if match.intent == RELATIONSHIP:
            return cls(action='relationship',
                       entity=args.get('entity'),
                       relationship=args.get('rel_type'),
                       direction=args.get('direction'),
                       entity_type=args.get('entity_type'))
        if match.intent == PATH_FINDING:
            return cls(action='path_finding', source=args.get('source'), target=args.get('target'))
        if match.intent == CONCEPT_SEARCH:
            return cls(action='semantic_search', concept=args.get('concept'))
        if match.intent == AGGREGATION:
            return cls(action='aggregation',
                       entity=args.get('entity'),
                       relationship=args.get('rel_type'),
                       entity_type=args.get('entity_type'))
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Encode as the JSON object shape an LLM is asked to produce."""
        return {key: value for key, value in asdict(self).items() if value}


@dataclass
class FormattedResponse:
    """Human-readable text plus the entities needed to re-render it."""
    text: str
    entities: List[Entity] = field(default_factory=list)
    path: List[PathNode] = field(default_factory=list)


@dataclass
class QueryResult:
    """Result of one processed conversation turn."""
    text: str
    action: str
    entities: List[Entity] = field(default_factory=list)
    path: List[PathNode] = field(default_factory=list)
