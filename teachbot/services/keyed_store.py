"""
Keyed Store Adapter: per-conversation namespaced key/value access with a
process-wide write-through read cache.
"""

import asyncio
from typing import Callable, Dict, Optional

from ..utils.config import StoreConfig, config
from ..utils.dynamodb_client import DynamoDBError, DynamoDBStore
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class KeyedStoreError(Exception):
    """Custom exception for keyed store errors."""
    pass


class InMemoryBackend:
    """Process-local key/value backend."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def health_check(self) -> bool:
        return True


def build_backend(store_config: Optional[StoreConfig] = None):
    """Create the backend named by the store configuration.

    Raises:
        KeyedStoreError: If the backend name is not recognized
    """
    store_config = store_config or config.store
    if store_config.backend == 'memory':
        return InMemoryBackend()
    if store_config.backend == 'dynamodb':
        return DynamoDBStore(store_config)
    raise KeyedStoreError(f'Unknown store backend: {store_config.backend}')


class StoreCache:
    """Read cache shared by every conversation in the process.

    Entries are keyed by conversation; each entry maps data keys to the
    last value successfully written to or read from the backend.
    """

    def __init__(self):
        self._entries: Dict[str, Dict[str, str]] = {}

    def lookup(self, conversation_key: str, datakey: str) -> Optional[str]:
        return self._entries.get(conversation_key, {}).get(datakey)

    def put(self, conversation_key: str, datakey: str, value: str) -> None:
        self._entries.setdefault(conversation_key, {})[datakey] = value

    def evict(self, conversation_key: str, datakey: str) -> None:
        entry = self._entries.get(conversation_key)
        if entry is not None:
            entry.pop(datakey, None)

    def drop(self, conversation_key: str) -> None:
        self._entries.pop(conversation_key, None)

    def __contains__(self, conversation_key: str) -> bool:
        return conversation_key in self._entries


class KeyedStore:
    """Key/value access scoped to one conversation.

    Every key is stored as '<namespace>:<conversation key>:<data key>'.
    Writes go to the backend first and update the cache only on success.
    Backend failures surface as KeyedStoreError; callers treat them as
    fatal to the current turn.
    """

    def __init__(self, backend, conversation_key: str, cache: StoreCache, namespace: Optional[str] = None):
        """
        Initialize a conversation-scoped store.

        Args:
            backend: Object with get/set/delete methods
            conversation_key: Key identifying the conversation
            cache: Process-wide StoreCache
            namespace: Key prefix (uses config default if None)
        """
        if not conversation_key:
            raise KeyedStoreError('Conversation key is required')
        self.backend = backend
        self.conversation_key = conversation_key
        self.cache = cache
        self.namespace = namespace or config.store.namespace

    def key(self, datakey: str) -> str:
        return f'{self.namespace}:{self.conversation_key}:{datakey}'

    async def get(self, datakey: str) -> Optional[str]:
        """Read a value, serving from the cache when possible.

        Returns:
            Stored string, or None if absent

        Raises:
            KeyedStoreError: If the backend read fails
        """
        cached = self.cache.lookup(self.conversation_key, datakey)
        if cached is not None:
            return cached

        value = await self._call('get', self.backend.get, self.key(datakey))
        if value is not None:
            self.cache.put(self.conversation_key, datakey, value)
        return value

    async def set(self, datakey: str, value: str) -> None:
        """Write a value through to the backend, then cache it.

        Raises:
            KeyedStoreError: If the backend write fails
        """
        try:
            await self._call('set', self.backend.set, self.key(datakey), value)
        except KeyedStoreError:
            # Backend state is unknown after a failed write
            self.cache.evict(self.conversation_key, datakey)
            raise
        self.cache.put(self.conversation_key, datakey, value)

    async def delete(self, datakey: str) -> None:
        """Remove a value from the backend and the cache.

        Raises:
            KeyedStoreError: If the backend delete fails
        """
        try:
            await self._call('delete', self.backend.delete, self.key(datakey))
        finally:
            self.cache.evict(self.conversation_key, datakey)

    def drop_cache(self) -> None:
        """Forget every cached value for this conversation."""
        self.cache.drop(self.conversation_key)

    async def _call(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except DynamoDBError as e:
            logger.error(f'Store {operation} failed for conversation {self.conversation_key}: {e}')
            raise KeyedStoreError(f'Store {operation} failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected store error during {operation} for conversation {self.conversation_key}: {e}')
            raise KeyedStoreError(f'Unexpected store error: {e}')


class CallbackStoreAdapter:
    """Callback-form access to a KeyedStore for host code that cannot await.

    Must be used from code running on the event loop; the callback is
    invoked as callback(error, value) once the read completes.
    """

    def __init__(self, store: KeyedStore):
        self.store = store

    def get(self, datakey: str, callback: Callable[[Optional[Exception], Optional[str]], None]) -> None:
        task = asyncio.get_running_loop().create_task(self.store.get(datakey))

        def _done(finished: asyncio.Task) -> None:
            error = finished.exception()
            if error is not None:
                callback(error, None)
            else:
                callback(None, finished.result())

        task.add_done_callback(_done)
