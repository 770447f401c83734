"""
Deterministic LLM stand-in for development without a model endpoint.
"""

import json
import math
import re
import zlib
from typing import List, Optional

from ..models.core import ActionEnvelope
from ..utils.logging_config import get_logger
from .pattern_matcher import EmptyQueryError, PatternMatcher

logger = get_logger(__name__)

DEFAULT_DIMENSION = 384

_CURRENT_QUERY = re.compile(r'^Current query: (.*)$', re.MULTILINE)
_TOKEN = re.compile(r'[a-z0-9]+')


def extract_current_query(prompt: str) -> Optional[str]:
    """Return the text of the last `Current query:` line in a prompt."""
    matches = _CURRENT_QUERY.findall(prompt or '')
    return matches[-1].strip() if matches else None


class StubLLMClient:
    """Answer graph prompts by pattern matching the current query.

    Completions are action envelopes built from PatternMatcher results;
    embeddings are normalized hashed bag-of-words vectors, so texts sharing
    words have positive cosine similarity.
    """

    def __init__(self, matcher: Optional[PatternMatcher] = None, dimension: int = DEFAULT_DIMENSION):
        self.matcher = matcher or PatternMatcher()
        self.dimension = dimension
        logger.info(f'Initialized StubLLMClient (dimension={dimension})')

    def generate_completion(self, prompt: str) -> str:
        query = extract_current_query(prompt) or ''
        try:
            match = self.matcher.match(query)
        except EmptyQueryError:
            return json.dumps({'action': 'answer', 'answer': 'Please ask a question about the knowledge graph.'})

        if match.ambiguous:
            options = ' '.join(match.options)
            return json.dumps({'action': 'answer', 'answer': f'That could mean several things. {options}'})

        envelope = ActionEnvelope.from_match(match)
        if envelope is None:
            answer = (f"I understand you're asking: '{query}'. This is a stub response; "
                      'a configured LLM would answer it directly.')
            return json.dumps({'action': 'answer', 'answer': answer})

        logger.debug(f'Stub completion for {match.intent}')
        return json.dumps(envelope.to_dict())

    def generate_embedding(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for token in _TOKEN.findall((text or '').lower()):
            vector[zlib.crc32(token.encode('utf-8')) % self.dimension] += 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]

    def health_check(self) -> bool:
        return True
