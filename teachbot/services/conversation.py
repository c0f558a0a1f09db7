"""
Per-conversation handle bundling store, session state and entity memory.
"""

from typing import Dict, Optional

from ..utils.config import config
from ..utils.logging_config import get_logger
from .entity_memory import EntityMemory
from .keyed_store import KeyedStore, StoreCache, build_backend
from .session_state import SessionState

logger = get_logger(__name__)


class Conversation:
    """Everything the orchestrator needs to know about one conversation."""

    def __init__(self, key: str, store: KeyedStore):
        self.key = key
        self.store = store
        self.state = SessionState(store)
        self.memory = EntityMemory(store)

    async def init(self, app_id: Optional[str]) -> None:
        """Point the conversation at an application, discarding prior state."""
        await self.state.clear(app_id)
        await self.memory.forget_all()
        logger.info(f'Initialized conversation {self.key} for app {app_id}')

    async def start_session(self, session_id: str, in_teach: bool) -> None:
        await self.memory.forget_all()
        await self.state.set_session_id(session_id)
        await self.state.set_in_teach(in_teach)
        logger.info(f'Started {"teach" if in_teach else "normal"} session {session_id} for conversation {self.key}')

    async def end_session(self) -> None:
        await self.memory.forget_all()
        await self.state.set_session_id(None)
        await self.state.set_in_teach(False)
        self.store.drop_cache()
        logger.info(f'Ended session for conversation {self.key}')


class ConversationRegistry:
    """Creates one Conversation per key and hands back the same one afterwards."""

    def __init__(self, backend=None, namespace: Optional[str] = None, cache: Optional[StoreCache] = None):
        """
        Initialize the registry.

        Args:
            backend: Key/value backend (built from config if None)
            namespace: Key prefix (uses config default if None)
            cache: Shared StoreCache (a new one if None)
        """
        self.backend = backend if backend is not None else build_backend(config.store)
        self.namespace = namespace or config.store.namespace
        self.cache = cache or StoreCache()
        self._conversations: Dict[str, Conversation] = {}

    def get(self, key: str) -> Conversation:
        conversation = self._conversations.get(key)
        if conversation is None:
            store = KeyedStore(self.backend, key, self.cache, self.namespace)
            conversation = Conversation(key, store)
            self._conversations[key] = conversation
        return conversation

    def __contains__(self, key: str) -> bool:
        return key in self._conversations

    def release(self, key: str) -> None:
        """Forget the handle for a conversation; the next get() builds a fresh one."""
        self._conversations.pop(key, None)
