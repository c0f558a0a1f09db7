"""
HTTP client for the extraction/scoring service with retry logic and error handling.
"""

import asyncio
import random
import time
from typing import Any, Dict, Optional

import requests

from ..models.core import ExtractResponse, ScoreInput, ScoreResponse
from .config import ModelServiceConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class ModelServiceError(Exception):
    """Custom exception for extraction/scoring service errors."""
    pass


class ModelClient:
    """Client for entity extraction and action scoring.

    Every call is a JSON POST; blocking requests run in a worker thread so
    the awaiting turn yields while the service responds.
    """

    def __init__(self, config: ModelServiceConfig, session: Optional[requests.Session] = None):
        """
        Initialize the model service client.

        Args:
            config: ModelServiceConfig instance with connection parameters
            session: Optional requests session (a new one if None)
        """
        self.config = config
        self.base_uri = config.service_uri.rstrip('/') + '/'
        self.session = session or requests.Session()
        if config.user:
            self.session.auth = (config.user, config.secret)

        logger.info(f'Initialized model service client for: {self.base_uri}')

    async def session_extract(self, app_id: str, session_id: str, text: str) -> ExtractResponse:
        """Extract entities from an utterance in a normal session."""
        self._require_ids(app_id, session_id)
        data = await asyncio.to_thread(self._post, f'app/{app_id}/session/{session_id}/extractor', {'text': text})
        return ExtractResponse.from_dict(data)

    async def teach_extract(self, app_id: str, session_id: str, text: str) -> ExtractResponse:
        """Extract entities from an utterance in a teach session."""
        self._require_ids(app_id, session_id)
        data = await asyncio.to_thread(self._post, f'app/{app_id}/teach/{session_id}/extractor', {'text': text})
        return ExtractResponse.from_dict(data)

    async def session_score(self, app_id: str, session_id: str, score_input: ScoreInput) -> ScoreResponse:
        """Score candidate actions given the entities filled so far."""
        self._require_ids(app_id, session_id)
        data = await asyncio.to_thread(self._post, f'app/{app_id}/session/{session_id}/scorer', score_input.to_dict())
        return ScoreResponse.from_dict(data)

    @staticmethod
    def _require_ids(app_id: Optional[str], session_id: Optional[str]) -> None:
        if not app_id:
            raise ModelServiceError('No application id; initialize the conversation first')
        if not session_id:
            raise ModelServiceError('No active session; start a session first')

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON body with retries on connection errors and 5xx responses.

        Returns:
            Decoded JSON object

        Raises:
            ModelServiceError: On a 4xx response, a non-object body, or when
                all retry attempts fail
        """
        url = self.base_uri + path

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Model service POST {path} attempt {attempt + 1}/{self.config.retry_attempts}')
                response = self.session.post(url, json=body, timeout=self.config.timeout)

                if response.status_code >= 500:
                    raise requests.HTTPError(f'{response.status_code}: {response.text}')
                if response.status_code >= 400:
                    raise ModelServiceError(f'Model service rejected {path} ({response.status_code}): {response.text}')

                data = response.json()
                if not isinstance(data, dict):
                    raise ModelServiceError(f'Expected JSON object from {path}, got {type(data).__name__}')
                return data

            except ModelServiceError:
                raise

            except (requests.ConnectionError, requests.Timeout, requests.HTTPError) as e:
                logger.warning(f'Model service attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise ModelServiceError(f'Model service failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error calling model service: {e}')
                raise ModelServiceError(f'Unexpected model service error: {e}')

        raise ModelServiceError(f'Model service failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the model service.

        Returns:
            True if the service answers, False otherwise
        """
        try:
            response = self.session.get(self.base_uri, timeout=self.config.timeout)
            return response.status_code < 500

        except Exception as e:
            logger.error(f'Model service health check failed: {e}')
            return False
