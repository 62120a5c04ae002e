"""
Amazon Bedrock LLM client wrapper with retry logic and error handling.
"""

import random
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


class BedrockLLM:
    """Amazon Bedrock LLM client with retry logic and error handling."""

    def __init__(self, config: BedrockLLMConfig, client=None):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
            client: Optional pre-built bedrock-runtime client
        """
        self.config = config
        self.title_model_id = config.title_model_id
        self.extraction_model_id = config.extraction_model_id

        self.bedrock_runtime = client or boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=config.timeout_seconds,
                read_timeout=config.timeout_seconds,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with models: {self.title_model_id}, {self.extraction_model_id}')

    @staticmethod
    def _response_text(response: Dict[str, Any]) -> str:
        """Concatenate the text blocks of a converse response, skipping reasoning blocks."""
        content: List[Dict[str, Any]] = response.get('output', {}).get('message', {}).get('content', [])
        return ''.join(block['text'] for block in content if 'text' in block)

    def generate_text(self,
                      prompt: str,
                      system_prompt: str,
                      model_id: Optional[str] = None,
                      max_tokens: Optional[int] = None,
                      temperature: Optional[float] = None) -> str:
        """
        Generate a single completion with retry logic.

        Args:
            prompt: User message text
            system_prompt: System prompt for the conversation
            model_id: Model to call (uses the title model if None)
            max_tokens: Maximum tokens to generate (uses config default if None)
            temperature: Temperature for generation (uses config default if None)

        Returns:
            Response text

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        model_id = model_id or self.title_model_id
        inf_params = {
            'maxTokens': max_tokens or self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
        }
        messages = [{'role': 'user', 'content': [{'text': prompt}]}]

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts} model={model_id}')

                response = self.bedrock_runtime.converse(modelId=model_id,
                                                         messages=messages,
                                                         system=[{'text': system_prompt}],
                                                         inferenceConfig=inf_params)
                text = self._response_text(response)

                logger.debug(f'Bedrock LLM response generated successfully (length: {len(text)})')
                return text

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.generate_text(prompt='Hi',
                                          system_prompt="You are a helpful assistant. Respond with just 'OK'.",
                                          max_tokens=10,
                                          temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
