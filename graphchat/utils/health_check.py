"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .config import AppConfig, config
from .logging_config import get_logger

logger = get_logger(__name__)


def get_health_status(components: Dict[str, Any]) -> Dict[str, Any]:
    """Get detailed health status of the given components.

    Args:
        components: Mapping of component name to an object exposing `health_check()`

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}
    for name, component in components.items():
        service = type(component).__name__
        check = getattr(component, 'health_check', None)
        if check is None:
            health_status[name] = {'healthy': True, 'service': service}
            continue
        try:
            health_status[name] = {'healthy': bool(check()), 'service': service}
        except Exception as e:
            logger.error(f'Health check for {name} failed: {e}')
            health_status[name] = {'healthy': False, 'service': service, 'error': str(e)}
    return health_status


def get_system_info(components: Dict[str, Any], app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information, configuration and component health (global config if app_config is None)."""
    app_config = app_config or config
    health_status = get_health_status(components)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())
    if not all_healthy:
        logger.warning('Some system components are unhealthy')

    return {
        'service_name': 'GraphChat',
        'version': '1.0.0',
        'environment': app_config.environment,
        'configuration': {
            'llm_provider': app_config.chat.llm_provider,
            'repository_provider': app_config.chat.repository_provider,
            'bedrock_llm_model': app_config.bedrock_llm.model_id,
            'bedrock_embed_model': app_config.bedrock_embed.model_id,
            'query_timeout': app_config.chat.query_timeout,
        },
        'healthy': all_healthy,
        'health_status': health_status
    }
