"""
Health check utilities for the application.
"""

from typing import Any, Dict, Optional

from .config import AppConfig, config
from .logging_config import get_logger

logger = get_logger(__name__)

SERVICE_VERSION = '1.0.0'


def get_health_status(components: Dict[str, Any]) -> Dict[str, Any]:
    """Get detailed health status of the given components.

    Args:
        components: Mapping of component name to an object with a ``health_check()``
            method; None marks a component that is not configured

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    for name, component in components.items():
        if component is None:
            health_status[name] = {'healthy': False, 'configured': False}
            continue
        try:
            health_status[name] = {
                'healthy': bool(component.health_check()),
                'configured': True,
                'service': getattr(component, 'name', type(component).__name__)
            }
        except Exception as e:
            health_status[name] = {'healthy': False, 'configured': True, 'error': str(e)}

    return health_status


def check_health(components: Dict[str, Any]) -> bool:
    """Check the health of all configured components.

    Returns:
        True if every configured component is healthy, False otherwise
    """
    health_status = get_health_status(components)
    configured = [status for status in health_status.values() if status['configured']]
    all_healthy = all(status['healthy'] for status in configured)

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')

    return all_healthy


def get_system_info(components: Dict[str, Any], app_config: Optional[AppConfig] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'Digital Twin',
        'version': SERVICE_VERSION,
        'configuration': {
            'environment': app_config.environment,
            'llm_provider': app_config.llm_provider,
            'openai_model': app_config.openai.model,
            'api_base_url': app_config.api.base_url,
            'backend_configured': bool(app_config.backend.url and app_config.backend.anon_key)
        },
        'health_status': get_health_status(components)
    }
