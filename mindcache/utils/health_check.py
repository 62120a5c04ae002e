"""
Health check utilities for the application.
"""

from typing import Any, Dict

from .config import config
from .logging_config import get_logger

logger = get_logger(__name__)

STORE_SERVICES = {
    'postgres': 'PostgreSQL (pgvector)',
    'opensearch': 'Amazon OpenSearch',
}


def check_health(store=None, llm=None, cache=None) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(store, llm, cache)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(store=None, llm=None, cache=None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Components left as None are built from configuration.

    Args:
        store: MemoryStore backend
        llm: BedrockLLM client used for enrichment
        cache: MetadataCache

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check memory store
    store_service = STORE_SERVICES.get(config.store.backend, config.store.backend)
    try:
        if store is None:
            from .memory_store import create_memory_store
            store = create_memory_store(config.store, config.embedding.dimension)
        store_service = STORE_SERVICES.get(store.name, store_service)
        health_status['memory_store'] = {'healthy': store.health_check(), 'service': store_service, 'backend': store.name}
    except Exception as e:
        health_status['memory_store'] = {'healthy': False, 'service': store_service, 'error': str(e)}

    # Check Bedrock LLM
    try:
        if not config.bedrock_llm.enabled:
            health_status['bedrock_llm'] = {
                'healthy': True,
                'service': 'Amazon Bedrock LLM',
                'status': 'disabled'
            }
        else:
            if llm is None:
                from .bedrock_llm import BedrockLLM
                llm = BedrockLLM(config.bedrock_llm)
            health_status['bedrock_llm'] = {
                'healthy': llm.health_check(),
                'service': 'Amazon Bedrock LLM',
                'model': config.bedrock_llm.title_model_id
            }
    except Exception as e:
        health_status['bedrock_llm'] = {'healthy': False, 'service': 'Amazon Bedrock LLM', 'error': str(e)}

    # Check metadata cache
    try:
        if cache is None:
            from ..services.metadata_cache import create_metadata_cache
            cache = create_metadata_cache(config.cache)
        health_status['metadata_cache'] = {'healthy': cache.health_check(), 'service': 'Metadata cache', 'backend': cache.name}
    except Exception as e:
        health_status['metadata_cache'] = {'healthy': False, 'service': 'Metadata cache', 'error': str(e)}

    return health_status


def get_system_info(store=None, llm=None, cache=None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    from .. import __version__

    return {
        'service_name': 'MindCache',
        'version': __version__,
        'configuration': {
            'memory_store_backend': config.store.backend,
            'embedding_provider': config.embedding.provider,
            'embedding_dimension': config.embedding.dimension,
            'title_model': config.bedrock_llm.title_model_id,
            'extraction_model': config.bedrock_llm.extraction_model_id,
            'similarity_threshold': config.search.similarity_threshold,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(store, llm, cache)
    }
