"""
Configuration management for the chat engine, its AWS collaborators and the MCP host.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database."""
    endpoint: str
    port: int
    region: str


@dataclass
class OpenSearchConfig:
    """Configuration for the OpenSearch entity embedding index."""
    endpoint: str
    port: int
    region: str
    index_name: str
    dimension: int


@dataclass
class ChatConfig:
    """Configuration for the conversational query engine."""
    llm_provider: str  # bedrock | stub
    repository_provider: str  # neptune | memory
    graph_fixture: str  # JSON graph loaded by the in-memory repository
    max_history: int
    max_query_length: int
    query_timeout: float
    similarity_limit: int
    ambiguity_check: bool
    max_workers: int
    max_conversations: int  # idle conversations beyond this are evicted, least recently used first


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    opensearch: OpenSearchConfig
    chat: ChatConfig
    mcp: MCPConfig


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1024')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.0')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '60')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'))

    # Entity embedding index
    opensearch_config = OpenSearchConfig(endpoint=os.getenv('OPENSEARCH_ENDPOINT', 'localhost'),
                                         port=int(os.getenv('OPENSEARCH_PORT', '443')),
                                         region=os.getenv('OPENSEARCH_AWS_REGION', 'us-east-1'),
                                         index_name=os.getenv('OPENSEARCH_INDEX', 'graph_entities'),
                                         dimension=int(os.getenv('OPENSEARCH_DIMENSION', '1024')))

    # Chat engine configuration
    chat_config = ChatConfig(llm_provider=os.getenv('CHAT_LLM_PROVIDER', 'bedrock').lower(),
                             repository_provider=os.getenv('CHAT_REPOSITORY_PROVIDER', 'neptune').lower(),
                             graph_fixture=os.getenv('CHAT_GRAPH_FIXTURE', ''),
                             max_history=int(os.getenv('CHAT_MAX_HISTORY', '5')),
                             max_query_length=int(os.getenv('CHAT_MAX_QUERY_LENGTH', '1000')),
                             query_timeout=float(os.getenv('CHAT_QUERY_TIMEOUT', '60')),
                             similarity_limit=int(os.getenv('CHAT_SIMILARITY_LIMIT', '10')),
                             ambiguity_check=_env_flag('CHAT_AMBIGUITY_CHECK', 'true'),
                             max_workers=int(os.getenv('CHAT_MAX_WORKERS', '4')),
                             max_conversations=int(os.getenv('CHAT_MAX_CONVERSATIONS', '1000')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     opensearch=opensearch_config,
                     chat=chat_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
