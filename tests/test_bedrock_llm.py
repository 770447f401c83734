"""
Tests for the Bedrock completion and embedding clients with the AWS client mocked.
"""

import io
import json
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from graphchat.utils.bedrock_llm import BedrockEmbed, BedrockEmbedError, BedrockLLM, BedrockLLMClient, BedrockLLMError
from graphchat.utils.config import BedrockEmbedConfig, BedrockLLMConfig


def throttled():
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'Rate exceeded'}}, 'ConverseStream')


def stream(*chunks):
    events = [{'contentBlockDelta': {'delta': {'text': chunk}}} for chunk in chunks]
    events.append({'metadata': {'usage': {'inputTokens': 10, 'outputTokens': 2}}})
    return {'stream': events}


@pytest.fixture
def llm_config():
    return BedrockLLMConfig(region='us-east-1',
                            model_id='anthropic.claude-3-haiku-20240307-v1:0',
                            max_tokens=256,
                            temperature=0.0,
                            retry_attempts=3,
                            retry_delay=0.0,
                            read_timeout=30)


@pytest.fixture
def embed_config():
    return BedrockEmbedConfig(region='us-east-1',
                              model_id='amazon.titan-embed-text-v2:0',
                              dimension=4,
                              retry_attempts=2,
                              retry_delay=0.0)


class TestBedrockLLM:
    """Completion through converse_stream."""

    def test_completion_joins_stream_chunks(self, llm_config):
        runtime = Mock()
        runtime.converse_stream.return_value = stream('{"action": ', '"answer"}')

        llm = BedrockLLM(llm_config, client=runtime)

        assert llm.generate_completion('Who is Jeff Skilling?') == '{"action": "answer"}'
        request = runtime.converse_stream.call_args.kwargs
        assert request['messages'] == [{'role': 'user', 'content': [{'text': 'Who is Jeff Skilling?'}]}]
        assert request['inferenceConfig']['maxTokens'] == 256
        assert 'system' not in request

    @patch('graphchat.utils.bedrock_llm.time.sleep')
    def test_retries_throttling(self, sleep, llm_config):
        runtime = Mock()
        runtime.converse_stream.side_effect = [throttled(), stream('OK')]

        assert BedrockLLM(llm_config, client=runtime).generate_completion('Hi') == 'OK'
        assert runtime.converse_stream.call_count == 2
        sleep.assert_called_once()

    @patch('graphchat.utils.bedrock_llm.time.sleep')
    def test_gives_up_after_retry_attempts(self, sleep, llm_config):
        runtime = Mock()
        runtime.converse_stream.side_effect = throttled()

        with pytest.raises(BedrockLLMError):
            BedrockLLM(llm_config, client=runtime).generate_completion('Hi')
        assert runtime.converse_stream.call_count == 3

    def test_unexpected_errors_are_not_retried(self, llm_config):
        runtime = Mock()
        runtime.converse_stream.side_effect = ValueError('bad request shape')

        with pytest.raises(BedrockLLMError):
            BedrockLLM(llm_config, client=runtime).generate_completion('Hi')
        assert runtime.converse_stream.call_count == 1

    def test_health_check_reports_failure(self, llm_config):
        runtime = Mock()
        runtime.converse_stream.side_effect = ValueError('no access')
        assert BedrockLLM(llm_config, client=runtime).health_check() is False


class TestBedrockEmbed:
    """Embeddings through invoke_model."""

    def test_titan_embedding(self, embed_config):
        runtime = Mock()
        runtime.invoke_model.return_value = {'body': io.BytesIO(json.dumps({'embedding': [0.1, 0.2, 0.3, 0.4]}).encode())}

        embed = BedrockEmbed(embed_config, client=runtime)

        assert embed.embed_query('energy trading') == [0.1, 0.2, 0.3, 0.4]
        body = json.loads(runtime.invoke_model.call_args.kwargs['body'])
        assert body == {'inputText': 'energy trading', 'dimensions': 4}

    def test_empty_text_skips_the_call(self, embed_config):
        runtime = Mock()
        assert BedrockEmbed(embed_config, client=runtime).embed_query(' ') == [0.0] * 4
        runtime.invoke_model.assert_not_called()

    def test_cohere_requires_1024_dimensions(self, embed_config):
        embed_config.model_id = 'cohere.embed-english-v3'
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(embed_config, client=Mock()).embed_query('energy')

    def test_missing_embedding_in_response(self, embed_config):
        runtime = Mock()
        runtime.invoke_model.return_value = {'body': io.BytesIO(b'{}')}
        with pytest.raises(BedrockEmbedError):
            BedrockEmbed(embed_config, client=runtime).embed_query('energy')


def test_client_composes_completion_and_embedding():
    llm = Mock()
    embed = Mock()
    llm.generate_completion.return_value = 'text'
    embed.embed_query.return_value = [1.0]

    client = BedrockLLMClient(llm, embed)

    assert client.generate_completion('prompt') == 'text'
    assert client.generate_embedding('energy') == [1.0]
