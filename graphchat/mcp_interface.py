"""
MCP Interface Layer using fastmcp for conversational graph queries.
"""
import threading
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from graphchat.services.chat_service import ChatService, build_chat_service
from graphchat.services.query_handler import InvalidQueryError, QueryHandlerError
from graphchat.utils.config import config
from graphchat.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Graph Chat')

_service: Optional[ChatService] = None
_service_lock = threading.Lock()


def get_chat_service() -> ChatService:
    """Return the shared ChatService, building it from config on first use."""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_chat_service(config)
        return _service


@mcp.tool()
def process_chat_query(conversation_id: str, query: str) -> str:
    """Answer a natural-language question about the knowledge graph.

    Follow-up questions in the same conversation can refer back to earlier
    answers ("Who did he email?").

    Args:
        conversation_id: Identifier grouping the turns of one conversation
        query: Natural language question (at most 1000 characters)

    Returns:
        The conversational answer

    Raises:
        ValueError: If the conversation id or query is invalid
        Exception: If the query fails
    """
    try:
        answer = get_chat_service().process_query(conversation_id, query)
        logger.debug(f'MCP chat query answered for conversation {conversation_id}')
        return answer

    except InvalidQueryError as e:
        logger.warning(f'Invalid chat query: {e}')
        raise ValueError(str(e))
    except QueryHandlerError as e:
        logger.error(f'Query handler error in MCP chat query: {e}')
        raise Exception(f'Chat query failed: {e}')
    except Exception as e:
        logger.error(f'Unexpected error in MCP chat query: {e}')
        raise Exception(f'Chat query failed: {e}')


@mcp.tool()
def clear_chat_context(conversation_id: str) -> bool:
    """Forget the history and tracked entities of a conversation.

    Args:
        conversation_id: Identifier of the conversation to reset

    Returns:
        True once the conversation is cleared
    """
    if not conversation_id or not conversation_id.strip():
        raise ValueError('Conversation ID is required')

    get_chat_service().clear_context(conversation_id)
    return True


@mcp.tool()
def get_health_status() -> Dict[str, Any]:
    """Report configuration and the health of the LLM and graph repository."""
    return get_chat_service().health_status()


if __name__ == '__main__':
    transport = config.mcp.transport
    if transport == 'stdio':
        mcp.run(transport=transport)
    else:
        mcp.run(transport=transport, host=config.mcp.host, port=config.mcp.port)
