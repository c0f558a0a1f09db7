"""
Entity Memory: label-addressed recall and text substitution for one conversation.
"""

import asyncio
import re
from typing import Dict, List, Optional, Tuple

from ..models.core import PredictedEntity
from ..utils.json_utils import dump_value, load_object
from ..utils.logging_config import get_logger
from .keyed_store import KeyedStore, KeyedStoreError

logger = get_logger(__name__)

MEMORY_KEY = 'ENTITYMEMORY'

# Placeholder syntax inside action text and argument strings: {label}
PLACEHOLDER = re.compile(r'\{([^{}\s]+)\}')


class EntityMemory:
    """Remembered entity values for one conversation, keyed by label.

    The whole mapping is persisted as a single record and rewritten on each
    change. Insertion order is kept so remembered ids are reported in the
    order their labels were first filled.
    """

    def __init__(self, store: KeyedStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def _load(self) -> List[Dict[str, str]]:
        raw = await self.store.get(MEMORY_KEY)
        try:
            data = load_object(raw)
        except ValueError as e:
            raise KeyedStoreError(f'Corrupt entity memory for conversation {self.store.conversation_key}: {e}')
        if not data:
            return []
        return [entry for entry in data.get('entities', []) if entry.get('label')]

    async def _save(self, entries: List[Dict[str, str]]) -> None:
        await self.store.set(MEMORY_KEY, dump_value({'entities': entries}))

    async def remember_by_label(self, entity: PredictedEntity) -> None:
        """Store an entity's value under its label, replacing any previous value."""
        async with self._lock:
            entries = await self._load()
            entry = {'label': entity.label, 'id': entity.entity_id, 'value': entity.value}
            for i, existing in enumerate(entries):
                if existing['label'] == entity.label:
                    entries[i] = entry
                    break
            else:
                entries.append(entry)
            await self._save(entries)

        logger.debug(f'Remembered {entity.label}={entity.value!r}')

    async def forget_by_label(self, entity: PredictedEntity) -> None:
        """Remove an entity's label from memory.

        A negative entity (one whose metadata names a positive counterpart)
        forgets the counterpart's label instead of its own. Forgetting a
        label that was never remembered is a no-op.
        """
        async with self._lock:
            entries = await self._load()
            label = self._target_label(entity, entries)
            if label is None:
                logger.debug(f'Nothing to forget for {entity.label}')
                return

            remaining = [entry for entry in entries if entry['label'] != label]
            if len(remaining) == len(entries):
                return
            await self._save(remaining)

        logger.debug(f'Forgot {label}')

    @staticmethod
    def _target_label(entity: PredictedEntity, entries: List[Dict[str, str]]) -> Optional[str]:
        positive_id = entity.positive_counterpart_id
        if not positive_id:
            return entity.label
        if entity.positive_counterpart_label:
            return entity.positive_counterpart_label
        for entry in entries:
            if entry.get('id') == positive_id:
                return entry['label']
        return None

    async def forget_all(self) -> None:
        async with self._lock:
            await self.store.delete(MEMORY_KEY)

    async def remembered_ids(self) -> List[Tuple[str, str]]:
        """Snapshot of remembered entities as ordered (label, entity id) pairs."""
        return [(entry['label'], entry.get('id', '')) for entry in await self._load()]

    async def value(self, label: str) -> Optional[str]:
        for entry in await self._load():
            if entry['label'] == label:
                return entry.get('value')
        return None

    async def was_remembered(self, label: str) -> bool:
        return await self.value(label) is not None

    async def substitute(self, text: str) -> str:
        """Replace each {label} placeholder with its remembered value.

        Placeholders with no remembered value become the empty string.
        """
        if not text:
            return text or ''
        values = {entry['label']: entry.get('value') or '' for entry in await self._load()}
        return PLACEHOLDER.sub(lambda match: values.get(match.group(1), ''), text)

    async def substitute_entities(self, args: str) -> str:
        """Substitute remembered values into an action's argument string."""
        return await self.substitute(args)

    async def get_entities(self, args: str) -> Dict[str, str]:
        """Resolve an argument string into intent arguments.

        Each whitespace-separated token is either a label ('city' or
        '{city}'), resolved to its remembered value, or 'name=value', where
        the value may itself contain placeholders. Tokens that resolve to
        nothing are omitted.
        """
        values = {entry['label']: entry.get('value') or '' for entry in await self._load()}
        entities: Dict[str, str] = {}

        for token in (args or '').split():
            if '=' in token:
                name, raw_value = token.split('=', 1)
                resolved = PLACEHOLDER.sub(lambda match: values.get(match.group(1), ''), raw_value)
                if name and resolved:
                    entities[name] = resolved
                continue

            match = PLACEHOLDER.fullmatch(token)
            label = match.group(1) if match else token
            if values.get(label):
                entities[label] = values[label]

        return entities

    async def dump(self) -> str:
        entries = await self._load()
        return ', '.join(f"{entry['label']}={entry.get('value', '')}" for entry in entries)
