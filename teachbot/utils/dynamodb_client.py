"""
Amazon DynamoDB key/value backend with retry logic and error handling.
"""

import random
import time
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import StoreConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class DynamoDBError(Exception):
    """Custom exception for DynamoDB errors."""
    pass


class DynamoDBStore:
    """Key/value storage on a DynamoDB table.

    The table has a string partition key named 'key'; values are kept in a
    string attribute named 'value'.
    """

    def __init__(self, config: StoreConfig, table=None):
        """
        Initialize DynamoDB backend.

        Args:
            config: StoreConfig instance with table and retry parameters
            table: Optional pre-built boto3 Table resource (used by tests)
        """
        self.config = config

        if table is None:
            dynamodb = boto3.resource('dynamodb',
                                      region_name=config.region,
                                      config=BotoConfig(connect_timeout=10,
                                                        read_timeout=30,
                                                        retries={'max_attempts': 0}))  # We handle retries manually
            table = dynamodb.Table(config.table_name)
        self.table = table

        logger.info(f'Initialized DynamoDB store on table: {config.table_name}')

    def get(self, key: str) -> Optional[str]:
        """
        Read the value stored under a key.

        Args:
            key: Fully namespaced key

        Returns:
            Stored string, or None if the key is absent

        Raises:
            DynamoDBError: If all retry attempts fail
        """
        response = self._with_retry('get', lambda: self.table.get_item(Key={'key': key}, ConsistentRead=True))
        item = response.get('Item')
        if not item:
            return None
        return item.get('value')

    def set(self, key: str, value: str) -> None:
        """
        Write a value under a key, replacing any previous value.

        Raises:
            DynamoDBError: If all retry attempts fail
        """
        self._with_retry('set', lambda: self.table.put_item(Item={'key': key, 'value': value}))

    def delete(self, key: str) -> None:
        """
        Remove a key. Deleting an absent key is not an error.

        Raises:
            DynamoDBError: If all retry attempts fail
        """
        self._with_retry('delete', lambda: self.table.delete_item(Key={'key': key}))

    def _with_retry(self, operation: str, call):
        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'DynamoDB {operation} attempt {attempt + 1}/{self.config.retry_attempts}')
                return call()

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'DynamoDB {operation} attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise DynamoDBError(f'DynamoDB {operation} failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in DynamoDB {operation}: {e}')
                raise DynamoDBError(f'Unexpected DynamoDB error: {e}')

        raise DynamoDBError(f'DynamoDB {operation} failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the DynamoDB table.

        Returns:
            True if the table is reachable, False otherwise
        """
        try:
            self.table.load()
            return True

        except Exception as e:
            logger.error(f'DynamoDB health check failed: {e}')
            return False
