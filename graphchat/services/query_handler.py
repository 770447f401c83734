"""
Query handler: turns a natural-language query into a graph operation and a conversational answer.
"""

import threading
import time
from contextlib import contextmanager, nullcontext
from typing import Any, Callable, List, Optional, Tuple

from ..models.core import AMBIGUOUS, ActionEnvelope, Entity, FormattedResponse, QueryResult
from ..utils.json_utils import loads_json_object
from ..utils.logging_config import get_logger
from .collaborators import EntityNotFoundError, LLMClient, Repository
from .conversation_context import PRONOUNS, ConversationContext
from .pattern_matcher import EmptyQueryError, PatternMatcher
from .prompt_builder import PromptTemplate, build_disambiguation_prompt, build_query_prompt, default_prompt_template
from .response_formatter import ResponseFormatter

logger = get_logger(__name__)

DEFAULT_SIMILARITY_LIMIT = 10


class QueryHandlerError(Exception):
    """Base exception for failures surfaced to the host."""
    pass


class InvalidQueryError(QueryHandlerError):
    """The query was rejected before any collaborator call."""
    pass


class TransportError(QueryHandlerError):
    """The LLM collaborator failed, was cancelled, or timed out."""
    pass


class DeadlineExceededError(TransportError):
    """The caller's deadline elapsed before the query completed."""
    pass


class RepositoryError(QueryHandlerError):
    """A graph repository failure other than "not found"."""
    pass


class Deadline:
    """Wall-clock budget for one query, shared with whoever may cancel it."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.expires_at = time.monotonic() + timeout
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._committed = False

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def cancel(self) -> bool:
        """Cancel the query unless its result is already committed.

        Returns:
            True if the query is now cancelled, False if it committed first
        """
        with self._lock:
            if self._committed:
                return False
            self._cancelled.set()
            return True

    @property
    def expired(self) -> bool:
        return self._cancelled.is_set() or time.monotonic() >= self.expires_at

    def check(self, stage: str) -> None:
        """Raise DeadlineExceededError if the budget is spent or the query was cancelled."""
        if self.expired:
            raise DeadlineExceededError(f'query processing timed out after {self.timeout:g} seconds ({stage})')

    @contextmanager
    def committing(self, stage: str):
        """Check the deadline and hold off cancellation while the body records the result."""
        with self._lock:
            self.check(stage)
            yield
            self._committed = True


def _check_deadline(deadline: Optional[Deadline], stage: str) -> None:
    if deadline is not None:
        deadline.check(stage)


# Result of one dispatched action: the formatted response and the entities to track, primary entity last
Dispatch = Tuple[FormattedResponse, List[Entity]]


class QueryHandler:
    """Process conversational graph queries against injected LLM and repository collaborators.

    The handler keeps no state between calls; everything conversational lives in
    the ConversationContext passed to `process_query`.
    """

    def __init__(self,
                 llm: LLMClient,
                 repository: Repository,
                 template: Optional[PromptTemplate] = None,
                 matcher: Optional[PatternMatcher] = None,
                 formatter: Optional[ResponseFormatter] = None,
                 similarity_limit: int = DEFAULT_SIMILARITY_LIMIT,
                 ambiguity_check: bool = True):
        """
        Initialize the query handler.

        Args:
            llm: Completion and embedding provider
            repository: Graph read interface
            template: Prompt template (default template if None)
            matcher: Pattern matcher used for ambiguity checks and envelope fallback
            formatter: Response formatter
            similarity_limit: Maximum hits returned by semantic search
            ambiguity_check: Answer ambiguous queries with clarification options instead of calling the LLM
        """
        self.llm = llm
        self.repository = repository
        self.template = template or default_prompt_template()
        self.matcher = matcher or PatternMatcher()
        self.formatter = formatter or ResponseFormatter()
        self.similarity_limit = similarity_limit
        self.ambiguity_check = ambiguity_check

        self._actions = {
            'entity_lookup': self._execute_entity_lookup,
            'relationship': self._execute_relationship,
            'path_finding': self._execute_path_finding,
            'semantic_search': self._execute_semantic_search,
            'aggregation': self._execute_aggregation,
            'answer': self._execute_answer,
        }

        logger.info(f'Initialized QueryHandler (ambiguity_check={ambiguity_check}, similarity_limit={similarity_limit})')

    def process_query(self, query: str, context: ConversationContext, deadline: Optional[Deadline] = None) -> QueryResult:
        """Answer one conversational query.

        Args:
            query: Raw user query
            context: Conversation the query belongs to; updated only on success
            deadline: Optional budget checked around every collaborator call

        Returns:
            QueryResult with the answer text and any entities/path for re-display

        Raises:
            InvalidQueryError: If the query is empty or whitespace-only
            TransportError: If the LLM fails (DeadlineExceededError when the deadline elapses)
            RepositoryError: If the repository fails for a reason other than "not found"
        """
        if query is None or not query.strip():
            raise InvalidQueryError('query cannot be empty')
        query = query.strip()

        if self.ambiguity_check:
            match = self.matcher.match(query)
            if match.ambiguous:
                logger.debug(f'Answering ambiguous query with {len(match.options)} options')
                response = FormattedResponse(text=build_disambiguation_prompt(query, match.options))
                return self._commit(query, context, AMBIGUOUS, (response, []), deadline)

        prompt = build_query_prompt(self.template, context, query)
        llm_output = self._generate_completion(prompt, deadline)

        data = loads_json_object(llm_output)
        if data is None:
            if not llm_output.strip():
                logger.warning('LLM returned an empty response')
                return self._commit(query, context, 'answer', (self.formatter.format_error('llm_error'), []), deadline)
            logger.warning('LLM response is not a JSON action envelope, using it as a direct answer')
            return self._commit(query, context, 'answer', (FormattedResponse(text=llm_output.strip()), []), deadline)

        envelope = ActionEnvelope.from_dict(data)
        action = envelope.canonical_action
        if action is None:
            logger.warning(f"Unsupported LLM action '{envelope.action}', falling back to pattern matching")
            envelope = self._envelope_from_patterns(query)
            if envelope is None:
                response = self.formatter.format_error('invalid_query', f"Unsupported action '{data.get('action', '')}'")
                return self._commit(query, context, 'unknown', (response, []), deadline)
            action = envelope.canonical_action

        logger.debug(f'Dispatching action {action}')
        dispatch = self._actions[action](envelope, query, context, deadline)
        return self._commit(query, context, action, dispatch, deadline)

    def clear_context(self, context: ConversationContext) -> None:
        context.clear()

    def _commit(self, query: str, context: ConversationContext, action: str, dispatch: Dispatch,
                deadline: Optional[Deadline]) -> QueryResult:
        """Record the turn and surfaced entities, then build the result."""
        response, tracked = dispatch
        guard = deadline.committing('before updating the conversation') if deadline is not None else nullcontext()
        with guard:
            for entity in tracked:
                context.track_entity(entity.name, entity.type, entity.id)
            context.add_turn(query, response.text)

        return QueryResult(text=response.text, action=action, entities=list(response.entities), path=list(response.path))

    def _envelope_from_patterns(self, query: str) -> Optional[ActionEnvelope]:
        try:
            match = self.matcher.match(query)
        except EmptyQueryError:
            return None
        return ActionEnvelope.from_match(match)

    def _generate_completion(self, prompt: str, deadline: Optional[Deadline]) -> str:
        _check_deadline(deadline, 'before the LLM call')
        try:
            output = self.llm.generate_completion(prompt)
        except DeadlineExceededError:
            raise
        except Exception as e:
            _check_deadline(deadline, 'during the LLM call')
            logger.error(f'LLM completion failed: {e}')
            raise TransportError(f'LLM error: {e}')
        _check_deadline(deadline, 'during the LLM call')
        return output or ''

    def _generate_embedding(self, text: str, deadline: Optional[Deadline]) -> List[float]:
        _check_deadline(deadline, 'before the embedding call')
        try:
            embedding = self.llm.generate_embedding(text)
        except DeadlineExceededError:
            raise
        except Exception as e:
            _check_deadline(deadline, 'during the embedding call')
            logger.error(f'Embedding generation failed: {e}')
            raise TransportError(f'embedding generation failed: {e}')
        _check_deadline(deadline, 'during the embedding call')
        return embedding

    def _call_repository(self, operation: str, func: Callable[..., Any], *args: Any, deadline: Optional[Deadline] = None) -> Any:
        """Run one repository call, wrapping every failure except "not found"."""
        _check_deadline(deadline, f'before {operation}')
        try:
            result = func(*args)
        except (EntityNotFoundError, DeadlineExceededError):
            raise
        except Exception as e:
            logger.error(f'Repository {operation} failed: {e}')
            raise RepositoryError(f'{operation} failed: {e}')
        _check_deadline(deadline, f'during {operation}')
        return result

    def _find_entity(self, name: str, deadline: Optional[Deadline]) -> Optional[Entity]:
        try:
            return self._call_repository('entity lookup', self.repository.find_entity_by_name, name, deadline=deadline)
        except EntityNotFoundError:
            logger.info(f"Entity '{name}' not found in the graph")
            return None

    def _resolve_name(self, name: Optional[str], query: str, context: ConversationContext) -> str:
        """Substitute the pronoun referent when the name is missing or is itself a pronoun."""
        name = (name or '').strip()
        if name and name.lower() not in PRONOUNS:
            return name

        resolved, found = context.resolve_pronoun(query)
        if found:
            logger.debug(f"Resolved pronoun in query to '{resolved.name}'")
            return resolved.name
        return name

    def _not_found(self, name: str) -> Dispatch:
        return self.formatter.format_error('entity_not_found', f"No entity named '{name}' exists in the knowledge graph."), []

    def _missing_argument(self, detail: str) -> Dispatch:
        return self.formatter.format_error('invalid_query', detail), []

    def _execute_entity_lookup(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                               deadline: Optional[Deadline]) -> Dispatch:
        name = self._resolve_name(envelope.entity, query, context)
        if not name:
            return self._missing_argument('The query does not name an entity to look up.')

        entity = self._find_entity(name, deadline)
        if entity is None:
            return self._not_found(name)

        return self.formatter.format_entities([entity]), [entity]

    def _execute_relationship(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                              deadline: Optional[Deadline]) -> Dispatch:
        name = self._resolve_name(envelope.entity, query, context)
        if not name:
            return self._missing_argument('The query does not name an entity whose relationships to follow.')

        entity = self._find_entity(name, deadline)
        if entity is None:
            return self._not_found(name)

        rel_type = (envelope.relationship or '').upper()
        related = self._call_repository('relationship traversal',
                                        self.repository.traverse_relationships,
                                        entity.id,
                                        rel_type,
                                        deadline=deadline)
        if not related:
            suffix = f' of type {rel_type}' if rel_type else ''
            return FormattedResponse(text=f'No relationships found for {entity.name}{suffix}.'), [entity]

        return self.formatter.format_entities(related), list(related) + [entity]

    def _execute_path_finding(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                              deadline: Optional[Deadline]) -> Dispatch:
        source_name = self._resolve_name(envelope.source, query, context)
        target_name = self._resolve_name(envelope.target, query, context)
        if not source_name or not target_name:
            return self._missing_argument('Finding a connection needs both a source and a target entity.')

        source = self._find_entity(source_name, deadline)
        if source is None:
            return self._not_found(source_name)
        target = self._find_entity(target_name, deadline)
        if target is None:
            return self._not_found(target_name)

        path = self._call_repository('path finding',
                                     self.repository.find_shortest_path,
                                     source.id,
                                     target.id,
                                     deadline=deadline)
        if not path:
            response = self.formatter.format_error('no_path', f'No path links {source.name} and {target.name}.')
            return response, [source, target]

        return self.formatter.format_path(path), [node.entity for node in path] + [source, target]

    def _execute_semantic_search(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                                 deadline: Optional[Deadline]) -> Dispatch:
        concept = (envelope.concept or envelope.entity or '').strip()
        if not concept:
            return self._missing_argument('The query does not say what to search for.')

        embedding = self._generate_embedding(concept, deadline)
        entities = self._call_repository('similarity search',
                                         self.repository.similarity_search,
                                         embedding,
                                         self.similarity_limit,
                                         deadline=deadline)

        return self.formatter.format_similar(entities), list(entities)

    def _execute_aggregation(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                             deadline: Optional[Deadline]) -> Dispatch:
        name = self._resolve_name(envelope.entity, query, context)
        if not name:
            return self._missing_argument('Counts are computed per entity; please name the entity to count for.')

        entity = self._find_entity(name, deadline)
        if entity is None:
            return self._not_found(name)

        rel_type = (envelope.relationship or '').upper()
        count = self._call_repository('relationship count',
                                      self.repository.count_relationships,
                                      entity.id,
                                      rel_type,
                                      deadline=deadline)

        label = rel_type or 'All'
        description = f'{label} relationships for {entity.name} ({entity.type})'
        return self.formatter.format_count(int(count), description), [entity]

    def _execute_answer(self, envelope: ActionEnvelope, query: str, context: ConversationContext,
                        deadline: Optional[Deadline]) -> Dispatch:
        if not (envelope.answer or '').strip():
            return self.formatter.format_error('llm_error'), []
        return FormattedResponse(text=envelope.answer), []


