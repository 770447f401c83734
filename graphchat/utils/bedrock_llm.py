"""
Amazon Bedrock completion and embedding clients with retry logic and error handling.
"""

import json
import random
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig, BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockEmbedError(BedrockLLMError):
    """Custom exception for Bedrock embedding errors."""
    pass


def _with_retry(operation: str, attempts: int, retry_delay: float, error_class: type, func: Callable[[], Any]) -> Any:
    """Call func, retrying AWS client errors with exponential backoff and jitter."""
    for attempt in range(attempts):
        try:
            logger.debug(f'{operation} attempt {attempt + 1}/{attempts}')
            return func()

        except (ClientError, BotoCoreError) as e:
            logger.warning(f'{operation} attempt {attempt + 1}/{attempts} failed: {e}')

            if attempt < attempts - 1:
                delay = retry_delay * (2**attempt) + random.uniform(0, 1)
                time.sleep(delay)
            else:
                raise error_class(f'{operation} failed after {attempts} attempts: {e}')

        except Exception as e:
            logger.error(f'Unexpected error in {operation}: {e}')
            raise error_class(f'Unexpected {operation} error: {e}')

    raise error_class(f'{operation} failed after {attempts} attempts')


class BedrockLLM:
    """Amazon Bedrock text generation through the Converse streaming API."""

    def __init__(self, config: BedrockLLMConfig, client: Optional[Any] = None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Pre-built bedrock-runtime client (created from config if None)
        """
        self.config = config
        self.model_id = config.model_id

        # Retries are handled here, so botocore's own are disabled
        self.bedrock_runtime = client or boto3.client('bedrock-runtime',
                                                      region_name=config.region,
                                                      config=BotoConfig(connect_timeout=10,
                                                                        read_timeout=config.read_timeout,
                                                                        retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def generate_response(self,
                          messages: List[Dict[str, Any]],
                          system_prompt: Optional[str] = None,
                          max_tokens: Optional[int] = None,
                          temperature: Optional[float] = None,
                          stop_sequences: Optional[List[str]] = None) -> str:
        """
        Generate a response using Bedrock LLM with retry logic.

        Args:
            messages: List of message dictionaries in Bedrock format
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)
            stop_sequences: Stop sequences for generation

        Returns:
            Generated text

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        inf_params = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }
        request = {'modelId': self.model_id, 'messages': messages, 'inferenceConfig': inf_params}
        if system_prompt:
            request['system'] = [{'text': system_prompt}]

        def converse() -> str:
            stream = self.bedrock_runtime.converse_stream(**request).get('stream')
            msg = ''
            if stream:
                for event in stream:
                    if 'contentBlockDelta' in event:
                        msg += event['contentBlockDelta']['delta'].get('text', '')
                    if 'metadata' in event:
                        logger.debug(f"Bedrock LLM usage: {event['metadata'].get('usage')}")
            return msg

        response = _with_retry('Bedrock LLM request', self.config.retry_attempts, self.config.retry_delay, BedrockLLMError,
                               converse)
        logger.debug(f'Bedrock LLM response generated successfully (length: {len(response)})')
        return response

    def generate_completion(self, prompt: str) -> str:
        """Complete a single-string prompt sent as one user message."""
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]
        return self.generate_response(messages=messages)

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_messages = [{'role': 'user', 'content': [{'text': 'Hi'}]}]
            response = self.generate_response(messages=test_messages,
                                              system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                              max_tokens=10,
                                              temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False


class BedrockEmbed:
    """Amazon Bedrock query embeddings for Titan and Cohere models."""

    def __init__(self, config: BedrockEmbedConfig, client: Optional[Any] = None):
        self.config = config
        self.model_id = config.model_id
        self.dimension = config.dimension

        self.bedrock = client or boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _request_body(self, text: str) -> Dict[str, Any]:
        model = self.model_id.lower()
        if 'titan' in model:
            return {'inputText': text, 'dimensions': self.dimension}
        if 'cohere' in model:
            if self.dimension != 1024:
                raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.dimension}')
            return {'input_type': 'search_query', 'texts': [text]}
        raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate an embedding for query text.

        Args:
            text: Query text to embed

        Returns:
            List of embedding values

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            logger.warning('Empty text provided for query embedding')
            return [0.0] * self.dimension

        body = json.dumps(self._request_body(text))

        def invoke() -> Dict[str, Any]:
            response = self.bedrock.invoke_model(body=body,
                                                 modelId=self.model_id,
                                                 accept='application/json',
                                                 contentType='application/json')
            return json.loads(response.get('body').read())

        result = _with_retry('Bedrock Embed request', self.config.retry_attempts, self.config.retry_delay, BedrockEmbedError,
                             invoke)

        if 'embedding' in result:
            return result['embedding']
        embeddings = result.get('embeddings') or []
        if embeddings:
            return embeddings[0]
        raise BedrockEmbedError(f'No embedding in Bedrock response for model {self.model_id}')

    def health_check(self) -> bool:
        try:
            return len(self.embed_query('test')) == self.dimension
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False


class BedrockLLMClient:
    """LLM collaborator for the query engine backed by Bedrock completion and embedding models."""

    def __init__(self, llm: BedrockLLM, embed: BedrockEmbed):
        self.llm = llm
        self.embed = embed

    @classmethod
    def from_config(cls, llm_config: BedrockLLMConfig, embed_config: BedrockEmbedConfig) -> 'BedrockLLMClient':
        return cls(BedrockLLM(llm_config), BedrockEmbed(embed_config))

    def generate_completion(self, prompt: str) -> str:
        return self.llm.generate_completion(prompt)

    def generate_embedding(self, text: str) -> List[float]:
        return self.embed.embed_query(text)

    def health_check(self) -> bool:
        return self.llm.health_check() and self.embed.health_check()
