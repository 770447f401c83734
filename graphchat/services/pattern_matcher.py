"""
Deterministic regex intent classifier for graph queries.
"""

import re
from typing import Dict, List, Optional

from ..models.core import (AGGREGATION, AMBIGUOUS, CONCEPT_SEARCH, ENTITY_LOOKUP, PATH_FINDING, RELATIONSHIP, UNKNOWN,
                           MatchResult)
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

COMMON_FIRST_NAMES = ('john', 'mike', 'david', 'robert', 'james', 'mary', 'susan')
GENERIC_TERMS = ('energy', 'finance', 'trading', 'power')

_TRAILING_PUNCTUATION = '?.!'


class EmptyQueryError(ValueError):
    """Raised when the matcher is given an empty or whitespace-only query."""
    pass


def _compile(*patterns: str) -> List[re.Pattern]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


def clean_argument(value: str) -> str:
    """Strip surrounding whitespace and trailing sentence punctuation."""
    return value.strip().rstrip(_TRAILING_PUNCTUATION).strip()


class PatternMatcher:
    """Classify a query into one of the supported graph intents.

    Categories are tried in a fixed order so a phrasing that fits several of
    them (e.g. "what is the relationship between X and Y") lands in the most
    specific one.
    """

    def __init__(self):
        self.path_finding_patterns = _compile(
            r'^how\s+(?:are|is)\s+(.+?)\s+and\s+(.+?)\s+connected\??$',
            r'^what\s+is\s+the\s+relationship\s+between\s+(.+?)\s+and\s+(.+?)\??$',
            r'^how\s+does\s+(.+?)\s+know\s+(.+?)\??$',
            r'^find\s+(?:the\s+)?connection\s+between\s+(.+?)\s+and\s+(.+?)$',
        )
        self.concept_search_patterns = _compile(
            r'^emails?\s+about\s+(.+?)$',
            r'^show\s+me\s+emails?\s+about\s+(.+?)$',
            r'^find\s+emails?\s+related\s+to\s+(.+?)$',
            r'^search\s+for\s+(?:discussions?\s+about\s+)?(.+?)$',
        )
        self.aggregation_patterns = _compile(
            r'^how\s+many\s+emails?\s+did\s+(.+?)\s+send\??$',
            r'^count\s+emails?\s+from\s+(.+?)$',
            r'^how\s+many\s+emails?\s+did\s+(.+?)\s+receive\??$',
            r'^how\s+many\s+people\s+did\s+(.+?)\s+email\??$',
            r'^how\s+many\s+(?:organizations?|orgs?)\s+are\s+mentioned(?:\s+in\s+emails?)?\??$',
        )
        self.relationship_patterns = _compile(
            r'^who\s+did\s+(.+?)\s+email\??$',
            r'^who\s+emailed\s+(.+?)\??$',
            r'^who\s+did\s+(.+?)\s+communicate\s+with\??$',
            r'^what\s+(?:organizations?|orgs?)\s+did\s+(.+?)\s+mention\??$',
        )
        self.entity_lookup_patterns = _compile(
            r'^who\s+is\s+(.+?)\??$',
            r'^what\s+is\s+(.+?)\??$',
            r'^tell\s+me\s+about\s+(.+?)$',
            r'^show\s+me\s+(.+?)$',
        )

    def match(self, query: str) -> MatchResult:
        """Classify a query.

        Args:
            query: Raw user query

        Returns:
            MatchResult; `unknown` with empty args when nothing matches

        Raises:
            EmptyQueryError: If the query is empty or whitespace-only
        """
        query = (query or '').strip()
        if not query:
            raise EmptyQueryError('empty query')

        if is_ambiguous(query):
            options = disambiguation_options(query)
            logger.debug(f'Ambiguous query with {len(options)} options: {query}')
            return MatchResult(intent=AMBIGUOUS, ambiguous=True, options=options)

        for matcher in (self._match_path_finding, self._match_concept_search, self._match_aggregation,
                        self._match_relationship, self._match_entity_lookup):
            result = matcher(query)
            if result is not None:
                logger.debug(f'Matched {result.intent} with args {result.args}')
                return result

        return MatchResult(intent=UNKNOWN)

    def _match_path_finding(self, query: str) -> Optional[MatchResult]:
        for pattern in self.path_finding_patterns:
            matches = pattern.match(query)
            if matches:
                return MatchResult(intent=PATH_FINDING,
                                   args={
                                       'source': clean_argument(matches.group(1)),
                                       'target': clean_argument(matches.group(2))
                                   })
        return None

    def _match_concept_search(self, query: str) -> Optional[MatchResult]:
        for pattern in self.concept_search_patterns:
            matches = pattern.match(query)
            if matches:
                return MatchResult(intent=CONCEPT_SEARCH, args={'concept': clean_argument(matches.group(1))})
        return None

    def _match_aggregation(self, query: str) -> Optional[MatchResult]:
        query_lower = query.lower()
        for pattern in self.aggregation_patterns:
            matches = pattern.match(query)
            if not matches:
                continue

            args: Dict[str, str] = {'aggregation': 'count'}
            if matches.groups() and matches.group(1):
                args['entity'] = clean_argument(matches.group(1))
                if 'send' in query_lower or 'from' in query_lower:
                    args['rel_type'] = 'SENT'
                elif 'receive' in query_lower:
                    args['rel_type'] = 'RECEIVED'
                elif 'people' in query_lower:
                    args['rel_type'] = 'COMMUNICATES_WITH'

            if 'organization' in query_lower or re.search(r'\borgs?\b', query_lower):
                args['entity_type'] = 'organization'

            return MatchResult(intent=AGGREGATION, args=args)
        return None

    def _match_relationship(self, query: str) -> Optional[MatchResult]:
        query_lower = query.lower()
        for pattern in self.relationship_patterns:
            matches = pattern.match(query)
            if not matches:
                continue

            args = {'entity': clean_argument(matches.group(1))}
            if 'emailed' in query_lower:
                args['rel_type'] = 'RECEIVED'
                args['direction'] = 'incoming'
            elif 'did' in query_lower and 'email' in query_lower:
                args['rel_type'] = 'SENT'
                args['direction'] = 'outgoing'
            elif 'communicate' in query_lower:
                args['rel_type'] = 'COMMUNICATES_WITH'
            elif 'mention' in query_lower:
                args['rel_type'] = 'MENTIONS'
                args['entity_type'] = 'organization'

            return MatchResult(intent=RELATIONSHIP, args=args)
        return None

    def _match_entity_lookup(self, query: str) -> Optional[MatchResult]:
        for pattern in self.entity_lookup_patterns:
            matches = pattern.match(query)
            if matches:
                return MatchResult(intent=ENTITY_LOOKUP, args={'name': clean_argument(matches.group(1))})
        return None


def is_ambiguous(query: str) -> bool:
    """Detect bare common first names and generic topic terms."""
    query_lower = query.strip().lower()

    if query_lower.startswith('who is '):
        name = clean_argument(query_lower[len('who is '):])
        if name in COMMON_FIRST_NAMES:
            return True

    if query_lower.startswith('tell me about '):
        subject = clean_argument(query_lower[len('tell me about '):])
        if subject in GENERIC_TERMS:
            return True

    return False


def disambiguation_options(query: str) -> List[str]:
    """Return two or three candidate interpretations for an ambiguous query."""
    query_lower = query.strip().lower()

    if query_lower.startswith('who is '):
        name = clean_argument(query[len('who is '):].strip()).title()
        if name.lower() == 'john':
            return [
                "Did you mean the person 'John Smith'?",
                "Did you mean the person 'John Doe'?",
                "Did you mean the organization 'Johnson & Co'?",
            ]
        return [
            f"Did you mean a person whose first name is '{name}'? Please give the full name.",
            f"Did you mean an organization named '{name}'?",
        ]

    if query_lower.startswith('tell me about '):
        term = clean_argument(query_lower[len('tell me about '):])
        return [
            f"Search for entities related to '{term}'",
            f"Find emails about '{term}'",
            f"Look up organization '{term.title()} Corp'",
        ]

    return [
        'Could you be more specific?',
        'Please provide more details',
    ]
