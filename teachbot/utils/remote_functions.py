"""
Client for remote functions invoked over HTTP GET.
"""

import asyncio
from typing import Any, Optional

import requests

from .config import RemoteFunctionConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class RemoteFunctionError(Exception):
    """Custom exception for remote function errors."""
    pass


class RemoteFunctionClient:
    """Invoke a named remote function with an argument string."""

    def __init__(self, config: RemoteFunctionConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.config.url)

    def build_url(self, function_name: str, args: str) -> str:
        """Compose the call URL: base url, function name, then the raw args.

        The auth key, when configured, is appended as the 'code' query
        parameter.
        """
        url = self.config.url
        if not url.endswith('/'):
            url += '/'
        url += f'{function_name}/{args or ""}'

        if self.config.key:
            url += ('&' if '?' in url else '?') + f'code={self.config.key}'
        return url

    async def invoke(self, function_name: str, args: str) -> Any:
        """
        Call a remote function.

        Args:
            function_name: Name of the function to call
            args: Argument string with entity values already substituted

        Returns:
            The 'Result' field of the JSON response, or the whole body when
            it is not a JSON object

        Raises:
            RemoteFunctionError: On transport failure or a 4xx/5xx response
                (the response body is the error detail)
        """
        if not self.configured:
            raise RemoteFunctionError('Remote function URL is not configured')
        return await asyncio.to_thread(self._get, function_name, args)

    def _get(self, function_name: str, args: str) -> Any:
        url = self.build_url(function_name, args)
        logger.debug(f'Calling remote function {function_name}')

        try:
            response = self.session.get(url, timeout=self.config.timeout)
        except requests.RequestException as e:
            logger.error(f'Remote function {function_name} request failed: {e}')
            raise RemoteFunctionError(f'Remote function {function_name} failed: {e}')

        if response.status_code >= 400:
            logger.error(f'Remote function {function_name} returned {response.status_code}')
            raise RemoteFunctionError(response.text)

        try:
            body = response.json()
        except ValueError:
            return response.text

        if isinstance(body, dict):
            return body.get('Result')
        return body
