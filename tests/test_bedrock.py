"""Tests for the Bedrock LLM and embedding wrappers with a stubbed runtime client."""

import io
import json
from dataclasses import replace

import pytest
from botocore.exceptions import ClientError

from mindcache.utils.bedrock_embed import BedrockEmbedder, BedrockEmbedError
from mindcache.utils.bedrock_llm import BedrockLLM, BedrockLLMError


def throttled(operation='Converse'):
    return ClientError({'Error': {'Code': 'ThrottlingException', 'Message': 'slow down'}}, operation)


class FakeBedrockRuntime:

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def converse(self, **kwargs):
        return self._next(kwargs)

    def invoke_model(self, **kwargs):
        return self._next(kwargs)


def converse_reply(*blocks):
    return {'output': {'message': {'role': 'assistant', 'content': list(blocks)}}}


def embedding_reply(payload):
    return {'body': io.BytesIO(json.dumps(payload).encode('utf-8'))}


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('mindcache.utils.bedrock_llm.time.sleep', lambda seconds: None)
    monkeypatch.setattr('mindcache.utils.bedrock_embed.time.sleep', lambda seconds: None)


class TestBedrockLLM:

    def test_generate_text_skips_reasoning_blocks(self, app_config):
        runtime = FakeBedrockRuntime([converse_reply({'reasoningContent': {'reasoningText': {'text': 'hmm'}}}, {'text': 'Hello'})])
        llm = BedrockLLM(app_config.bedrock_llm, client=runtime)

        assert llm.generate_text('Hi', 'Be brief') == 'Hello'
        call = runtime.calls[0]
        assert call['modelId'] == app_config.bedrock_llm.title_model_id
        assert call['system'] == [{'text': 'Be brief'}]
        assert call['messages'] == [{'role': 'user', 'content': [{'text': 'Hi'}]}]
        assert call['inferenceConfig']['maxTokens'] == app_config.bedrock_llm.max_tokens

    def test_explicit_model_and_zero_temperature(self, app_config):
        config = replace(app_config.bedrock_llm, temperature=0.7)
        runtime = FakeBedrockRuntime([converse_reply({'text': '{}'})])
        llm = BedrockLLM(config, client=runtime)

        llm.generate_text('p', 's', model_id='other-model', temperature=0.0)

        assert runtime.calls[0]['modelId'] == 'other-model'
        assert runtime.calls[0]['inferenceConfig']['temperature'] == 0.0

    def test_retries_transient_errors(self, app_config):
        config = replace(app_config.bedrock_llm, retry_attempts=3)
        runtime = FakeBedrockRuntime([throttled(), throttled(), converse_reply({'text': 'ok'})])

        assert BedrockLLM(config, client=runtime).generate_text('p', 's') == 'ok'
        assert len(runtime.calls) == 3

    def test_gives_up_after_retries(self, app_config):
        config = replace(app_config.bedrock_llm, retry_attempts=2)
        runtime = FakeBedrockRuntime([throttled(), throttled()])

        with pytest.raises(BedrockLLMError):
            BedrockLLM(config, client=runtime).generate_text('p', 's')

    def test_unexpected_error_not_retried(self, app_config):
        runtime = FakeBedrockRuntime([KeyError('output'), converse_reply({'text': 'never'})])
        with pytest.raises(BedrockLLMError):
            BedrockLLM(app_config.bedrock_llm, client=runtime).generate_text('p', 's')
        assert len(runtime.calls) == 1

    def test_health_check(self, app_config):
        assert BedrockLLM(app_config.bedrock_llm, client=FakeBedrockRuntime([converse_reply({'text': 'OK'})])).health_check()
        assert not BedrockLLM(app_config.bedrock_llm, client=FakeBedrockRuntime([KeyError('x')])).health_check()


class TestBedrockEmbedder:

    def test_titan_embedding(self, app_config):
        vector = [0.1] * 256
        runtime = FakeBedrockRuntime([embedding_reply({'embedding': vector})])
        embedder = BedrockEmbedder(app_config.embedding.bedrock, 256, client=runtime)

        assert embedder.embed('hello') == vector
        body = json.loads(runtime.calls[0]['body'])
        assert body == {'inputText': 'hello', 'dimensions': 256, 'normalize': True}

    def test_blank_text_is_zero_vector_without_call(self, app_config):
        runtime = FakeBedrockRuntime([])
        embedder = BedrockEmbedder(app_config.embedding.bedrock, 512, client=runtime)
        assert embedder.embed('   ') == [0.0] * 512
        assert runtime.calls == []

    def test_cohere_embedding(self, app_config):
        config = replace(app_config.embedding.bedrock, model_id='cohere.embed-english-v3')
        runtime = FakeBedrockRuntime([embedding_reply({'embeddings': [[0.5] * 1024]})])
        assert len(BedrockEmbedder(config, 1024, client=runtime).embed('hello')) == 1024

    def test_cohere_input_type_for_documents_and_queries(self, app_config):
        config = replace(app_config.embedding.bedrock, model_id='cohere.embed-english-v3')
        runtime = FakeBedrockRuntime([embedding_reply({'embeddings': [[0.5] * 1024]}), embedding_reply({'embeddings': [[0.5] * 1024]})])
        embedder = BedrockEmbedder(config, 1024, client=runtime)

        embedder.embed('stored text')
        embedder.embed_query('search text')

        assert [json.loads(call['body'])['input_type'] for call in runtime.calls] == ['search_document', 'search_query']

    @pytest.mark.parametrize('model_id,dimension', [('amazon.titan-embed-text-v2:0', 128), ('cohere.embed-english-v3', 256),
                                                    ('acme.embedder', 1024)])
    def test_unsupported_dimension_or_model(self, app_config, model_id, dimension):
        config = replace(app_config.embedding.bedrock, model_id=model_id)
        with pytest.raises(BedrockEmbedError):
            BedrockEmbedder(config, dimension, client=FakeBedrockRuntime([]))

    def test_wrong_length_response(self, app_config):
        runtime = FakeBedrockRuntime([embedding_reply({'embedding': [0.1] * 10})])
        with pytest.raises(BedrockEmbedError):
            BedrockEmbedder(app_config.embedding.bedrock, 256, client=runtime).embed('hello')

    def test_retries_then_fails(self, app_config):
        config = replace(app_config.embedding.bedrock, retry_attempts=2)
        runtime = FakeBedrockRuntime([throttled('InvokeModel'), throttled('InvokeModel')])
        with pytest.raises(BedrockEmbedError):
            BedrockEmbedder(config, 256, client=runtime).embed('hello')
        assert len(runtime.calls) == 2
