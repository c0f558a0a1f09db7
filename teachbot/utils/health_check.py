"""
Health check utilities for the orchestrator's external services.
"""

from typing import Any, Dict

from .config import config
from .logging_config import get_logger
from .model_client import ModelClient

logger = get_logger(__name__)


def check_health(backend=None) -> bool:
    """Check the health of all external components.

    Args:
        backend: Key/value backend to check (built from config if None)

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(backend)

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(backend=None) -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    # Check keyed store backend
    try:
        if backend is None:
            from ..services.keyed_store import build_backend
            backend = build_backend(config.store)
        health_status['store'] = {
            'healthy': backend.health_check(),
            'service': 'Keyed store',
            'backend': config.store.backend
        }
    except Exception as e:
        health_status['store'] = {'healthy': False, 'service': 'Keyed store', 'error': str(e)}

    # Check extraction/scoring service
    try:
        model_client = ModelClient(config.model_service)
        health_status['model_service'] = {
            'healthy': model_client.health_check(),
            'service': 'Extraction/scoring service',
            'endpoint': config.model_service.service_uri
        }
    except Exception as e:
        health_status['model_service'] = {'healthy': False, 'service': 'Extraction/scoring service', 'error': str(e)}

    return health_status


def get_system_info(backend=None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    return {
        'service_name': 'TeachBot',
        'version': '1.0.0',
        'configuration': {
            'store_backend': config.store.backend,
            'store_namespace': config.store.namespace,
            'model_service_uri': config.model_service.service_uri,
            'remote_functions_configured': bool(config.remote_functions.url)
        },
        'health_status': get_health_status(backend)
    }
