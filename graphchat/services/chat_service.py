"""
Chat service: per-conversation contexts, host-level validation and deadlines around the query handler.
"""

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, Optional, Tuple

from ..models.core import QueryResult
from ..utils.config import AppConfig, config
from ..utils.health_check import get_system_info
from ..utils.logging_config import get_logger
from .collaborators import LLMClient, Repository
from .conversation_context import MAX_HISTORY, ConversationContext
from .query_handler import Deadline, DeadlineExceededError, InvalidQueryError, QueryHandler

logger = get_logger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 1000
DEFAULT_QUERY_TIMEOUT = 60.0
DEFAULT_MAX_CONVERSATIONS = 1000


class ChatServiceError(Exception):
    """Custom exception for chat service setup errors."""
    pass


class ChatService:
    """Host-facing entry point that owns one ConversationContext per conversation id.

    Turns of the same conversation run one at a time; different conversations
    run concurrently on a bounded worker pool. Each turn gets a deadline; when
    it elapses before the turn commits, the caller gets DeadlineExceededError
    and the abandoned turn is discarded without touching its conversation.
    At most `max_conversations` are kept; the least recently used idle ones
    are evicted first.
    """

    def __init__(self,
                 handler: QueryHandler,
                 max_history: int = MAX_HISTORY,
                 max_query_length: int = DEFAULT_MAX_QUERY_LENGTH,
                 query_timeout: float = DEFAULT_QUERY_TIMEOUT,
                 max_workers: int = 4,
                 max_conversations: int = DEFAULT_MAX_CONVERSATIONS,
                 app_config: Optional[AppConfig] = None):
        """
        Initialize the chat service.

        Args:
            handler: Query handler shared by all conversations
            max_history: Turns retained per conversation
            max_query_length: Longest accepted query, in characters
            query_timeout: Seconds allowed per turn, including time queued behind the same conversation
            max_workers: Worker threads processing turns
            max_conversations: Conversations kept before idle ones are evicted
            app_config: Configuration reported by health_status (global config if None)
        """
        if max_conversations < 1:
            raise ChatServiceError(f'max_conversations must be positive, got {max_conversations}')
        self.handler = handler
        self.max_history = max_history
        self.max_query_length = max_query_length
        self.query_timeout = query_timeout
        self.max_conversations = max_conversations
        self.app_config = app_config or config

        # Least recently used first
        self._conversations: 'OrderedDict[str, Tuple[ConversationContext, threading.Lock]]' = OrderedDict()
        self._registry_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='graphchat')

        logger.info(f'Initialized ChatService (timeout={query_timeout}s, max_workers={max_workers}, '
                    f'max_conversations={max_conversations})')

    @property
    def conversation_count(self) -> int:
        with self._registry_lock:
            return len(self._conversations)

    def _conversation(self, conversation_id: str) -> Tuple[ConversationContext, threading.Lock]:
        with self._registry_lock:
            entry = self._conversations.get(conversation_id)
            if entry is None:
                entry = (ConversationContext(max_history=self.max_history), threading.Lock())
                self._conversations[conversation_id] = entry
                self._evict_idle()
            else:
                self._conversations.move_to_end(conversation_id)
            return entry

    def _evict_idle(self) -> None:
        """Drop least recently used conversations without a turn in progress; caller holds the registry lock."""
        for conversation_id, (_, lock) in list(self._conversations.items())[:-1]:
            if len(self._conversations) <= self.max_conversations:
                return
            if not lock.locked():
                del self._conversations[conversation_id]
                logger.debug(f'Evicted idle conversation {conversation_id}')

    def _acquire(self, conversation_id: str, deadline: Deadline) -> Tuple[ConversationContext, threading.Lock]:
        """Lock the conversation's current context, retrying if it was cleared or evicted while waiting."""
        while True:
            entry = self._conversation(conversation_id)
            context, lock = entry
            if not lock.acquire(timeout=deadline.remaining()):
                raise DeadlineExceededError(
                    f'query processing timed out after {deadline.timeout:g} seconds (waiting for the conversation)')
            with self._registry_lock:
                current = self._conversations.get(conversation_id) is entry
            if current:
                return entry
            lock.release()

    def get_context(self, conversation_id: str) -> ConversationContext:
        """Return the context for a conversation, creating an empty one if needed."""
        context, _ = self._conversation(conversation_id)
        return context

    def validate_query(self, query: Optional[str]) -> str:
        """Return the stripped query, or raise InvalidQueryError if it is empty or too long."""
        if query is None or not query.strip():
            raise InvalidQueryError('query cannot be empty')
        query = query.strip()
        if len(query) > self.max_query_length:
            raise InvalidQueryError(f'query too long (maximum {self.max_query_length} characters)')
        return query

    def process_query_result(self, conversation_id: str, query: str) -> QueryResult:
        """
        Process one turn and return the structured result.

        Raises:
            InvalidQueryError: If the conversation id or query is rejected
            DeadlineExceededError: If the turn does not commit within query_timeout
            TransportError: If the LLM fails
            RepositoryError: If the graph repository fails
        """
        if not conversation_id or not conversation_id.strip():
            raise InvalidQueryError('conversation id is required')
        query = self.validate_query(query)

        deadline = Deadline(self.query_timeout)
        future = self._executor.submit(self._run_turn, conversation_id, query, deadline)
        try:
            return future.result(timeout=deadline.remaining())
        except FutureTimeoutError:
            if not deadline.cancel():
                # The turn is already recorded in the conversation
                logger.warning(f'Query for conversation {conversation_id} committed at its deadline')
                return future.result()
            future.cancel()
            logger.error(f'Query for conversation {conversation_id} timed out after {self.query_timeout}s')
            raise DeadlineExceededError(f'query processing timed out after {self.query_timeout:g} seconds')

    def process_query(self, conversation_id: str, query: str) -> str:
        """Process one turn and return the answer text."""
        return self.process_query_result(conversation_id, query).text

    def _run_turn(self, conversation_id: str, query: str, deadline: Deadline) -> QueryResult:
        context, lock = self._acquire(conversation_id, deadline)
        try:
            return self.handler.process_query(query, context, deadline)
        finally:
            lock.release()

    def clear_context(self, conversation_id: str) -> None:
        """Forget the history and tracked entities of a conversation and release its slot."""
        with self._registry_lock:
            entry = self._conversations.get(conversation_id)
        if entry is None:
            logger.debug(f'No context to clear for conversation {conversation_id}')
            return

        context, lock = entry
        with lock:
            with self._registry_lock:
                if self._conversations.get(conversation_id) is entry:
                    del self._conversations[conversation_id]
            self.handler.clear_context(context)
        logger.info(f'Cleared context for conversation {conversation_id}')

    def health_status(self) -> Dict[str, Any]:
        return get_system_info({'llm': self.handler.llm, 'repository': self.handler.repository}, self.app_config)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        close_repository = getattr(self.handler.repository, 'close', None)
        if close_repository is not None:
            close_repository()


def build_llm_client(app_config: AppConfig) -> LLMClient:
    """Create the LLM collaborator selected by CHAT_LLM_PROVIDER."""
    provider = app_config.chat.llm_provider
    if provider == 'bedrock':
        from ..utils.bedrock_llm import BedrockLLMClient
        return BedrockLLMClient.from_config(app_config.bedrock_llm, app_config.bedrock_embed)
    if provider == 'stub':
        from .stub_llm import StubLLMClient
        return StubLLMClient()
    raise ChatServiceError(f'Unknown LLM provider: {provider}')


def build_repository(app_config: AppConfig, llm: LLMClient) -> Repository:
    """Create the graph repository selected by CHAT_REPOSITORY_PROVIDER."""
    provider = app_config.chat.repository_provider
    if provider == 'neptune':
        from ..utils.neptune_client import NeptuneClient
        from ..utils.opensearch_client import OpenSearchClient
        from .graph_repository import GraphRepository
        return GraphRepository(NeptuneClient(app_config.neptune), OpenSearchClient(app_config.opensearch))
    if provider == 'memory':
        from .in_memory_repository import InMemoryRepository
        if app_config.chat.graph_fixture:
            return InMemoryRepository.load_json(app_config.chat.graph_fixture, embed=llm.generate_embedding)
        return InMemoryRepository()
    raise ChatServiceError(f'Unknown repository provider: {provider}')


def build_chat_service(app_config: Optional[AppConfig] = None) -> ChatService:
    """Assemble a ChatService and its collaborators from configuration."""
    app_config = app_config or config
    llm = build_llm_client(app_config)
    repository = build_repository(app_config, llm)
    handler = QueryHandler(llm,
                           repository,
                           similarity_limit=app_config.chat.similarity_limit,
                           ambiguity_check=app_config.chat.ambiguity_check)
    return ChatService(handler,
                       max_history=app_config.chat.max_history,
                       max_query_length=app_config.chat.max_query_length,
                       query_timeout=app_config.chat.query_timeout,
                       max_workers=app_config.chat.max_workers,
                       max_conversations=app_config.chat.max_conversations,
                       app_config=app_config)
