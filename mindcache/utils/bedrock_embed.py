"""
Amazon Bedrock embedder with retry logic, usable in place of the hashed embedder.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

TITAN_DIMENSIONS = (256, 512, 1024)
COHERE_DIMENSIONS = (1024, )


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbedder:
    """Learned embedding model on Amazon Bedrock with the same contract as HashingEmbedder."""

    def __init__(self, config: BedrockEmbedConfig, dimension: int, client=None):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
            dimension: Vector length every stored memory uses
            client: Optional pre-built bedrock-runtime client

        Raises:
            BedrockEmbedError: If the model cannot produce vectors of this dimension
        """
        self.config = config
        self.model_id = config.model_id
        self.model_name = config.model_id
        self.dimension = dimension

        model = self.model_id.lower()
        if 'titan' in model:
            supported = TITAN_DIMENSIONS
        elif 'cohere' in model:
            supported = COHERE_DIMENSIONS
        else:
            raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')
        if dimension not in supported:
            raise BedrockEmbedError(f'{self.model_id} supports dimensions {supported}, got {dimension}')

        self.bedrock = client or boto3.client(service_name='bedrock-runtime', region_name=config.region)
        logger.info(f'Initialized Bedrock embedder with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Invoke the model, retrying transient AWS errors with exponential backoff.

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')
                return json.loads(response.get('body').read())

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')
                if attempt < self.config.retry_attempts - 1:
                    time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 1))

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def embed(self, text: str, input_type: str = 'search_document') -> List[float]:
        """
        Embed text; blank text yields the zero vector without a model call.

        Args:
            text: Text to embed
            input_type: Cohere input type, ``search_document`` or ``search_query``

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not text or not text.strip():
            return [0.0] * self.dimension

        if 'titan' in self.model_id.lower():
            response = self._call_with_retry({'inputText': text, 'dimensions': self.dimension, 'normalize': True})
            vector = response.get('embedding') or []
        else:
            response = self._call_with_retry({'input_type': input_type, 'texts': [text]})
            vectors = response.get('embeddings') or [[]]
            vector = vectors[0]

        if len(vector) != self.dimension:
            raise BedrockEmbedError(f'Expected {self.dimension} dimensions, got {len(vector)}')
        return [float(value) for value in vector]

    def embed_query(self, text: str) -> List[float]:
        return self.embed(text, input_type='search_query')

    def health_check(self) -> bool:
        try:
            return len(self.embed('test')) == self.dimension
        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
