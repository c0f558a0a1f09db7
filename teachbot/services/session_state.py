"""
Session State: the per-conversation record that decides which mode a turn runs in.
"""

import asyncio
import inspect
import json
from typing import Any, Callable, Dict, Optional

from ..models.core import SessionRecord
from ..utils.json_utils import dump_value, load_object
from ..utils.logging_config import get_logger
from .keyed_store import CallbackStoreAdapter, KeyedStore, KeyedStoreError

logger = get_logger(__name__)

STATE_KEY = 'BOTSTATE'


class SessionState:
    """Get/set accessors over a conversation's SessionRecord.

    A conversation with no stored record reads as a fresh default record
    (normal mode). Every setter reads the whole record, changes one field
    and writes the whole record back, inside a per-conversation lock.
    """

    def __init__(self, store: KeyedStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def get(self) -> SessionRecord:
        """Read the stored record.

        Raises:
            KeyedStoreError: If the read fails or the stored record is not valid JSON
        """
        raw = await self.store.get(STATE_KEY)
        try:
            data = load_object(raw)
        except ValueError as e:
            raise KeyedStoreError(f'Corrupt session state for conversation {self.store.conversation_key}: {e}')
        if data is None:
            return SessionRecord()
        return SessionRecord.from_dict(data)

    async def _put(self, record: SessionRecord) -> None:
        await self.store.set(STATE_KEY, dump_value(record.to_dict()))

    async def _update(self, field_name: str, value: Any) -> None:
        async with self._lock:
            record = await self.get()
            setattr(record, field_name, value)
            await self._put(record)
        logger.debug(f'Session state {field_name} set for conversation {self.store.conversation_key}')

    async def clear(self, app_id: Optional[str]) -> None:
        """Reset the record, keeping only the given application id."""
        async with self._lock:
            await self._put(SessionRecord(app_id=app_id))

    async def to_dict(self) -> Dict[str, Any]:
        return (await self.get()).to_dict()

    async def app_id(self) -> Optional[str]:
        return (await self.get()).app_id

    async def set_app_id(self, app_id: Optional[str]) -> None:
        await self._update('app_id', app_id)

    async def session_id(self) -> Optional[str]:
        return (await self.get()).session_id

    async def set_session_id(self, session_id: Optional[str]) -> None:
        await self._update('session_id', session_id)

    async def model_id(self) -> Optional[str]:
        return (await self.get()).model_id

    async def set_model_id(self, model_id: Optional[str]) -> None:
        await self._update('model_id', model_id)

    async def in_teach(self) -> bool:
        return (await self.get()).in_teach

    async def set_in_teach(self, in_teach: bool) -> None:
        await self._update('in_teach', bool(in_teach))

    async def in_debug(self) -> bool:
        return (await self.get()).in_debug

    async def set_in_debug(self, in_debug: bool) -> None:
        await self._update('in_debug', bool(in_debug))

    async def address(self) -> Optional[Dict[str, Any]]:
        """The stored delivery address, decoded; None if never set."""
        raw = (await self.get()).address
        if not raw:
            return None
        return json.loads(raw)

    async def set_address(self, address: Optional[Dict[str, Any]]) -> None:
        await self._update('address', json.dumps(address) if address is not None else None)

    async def bot_session(self, loader: Callable[[Dict[str, Any]], Any]):
        """Reload the host's conversation session from the stored address.

        Args:
            loader: Host callable taking the address and returning the
                session (or an awaitable resolving to it)

        Raises:
            ValueError: If no delivery address has been stored
        """
        address = await self.address()
        if address is None:
            raise ValueError(f'No delivery address stored for conversation {self.store.conversation_key}')
        session = loader(address)
        if inspect.isawaitable(session):
            session = await session
        return session

    def in_teach_with_callback(self, callback: Callable[[Optional[Exception], bool], None]) -> None:
        """Callback form of in_teach() for the legacy completion path.

        Read failures and missing records both report normal mode.
        """

        def _on_state(error: Optional[Exception], raw: Optional[str]) -> None:
            if error is not None:
                logger.warning(f'Session state read failed, assuming normal mode: {error}')
                callback(None, False)
                return
            try:
                data = load_object(raw)
            except ValueError as e:
                logger.warning(f'Session state is not valid JSON, assuming normal mode: {e}')
                callback(None, False)
                return
            callback(None, SessionRecord.from_dict(data).in_teach if data else False)

        CallbackStoreAdapter(self.store).get(STATE_KEY, _on_state)
