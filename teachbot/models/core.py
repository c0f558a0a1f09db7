"""
Core data models for turn orchestration.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

# Dialog that wraps an intent begun in teach mode
TEACH_INTENT_WRAPPER = 'TeachIntentWrapper'


class ActionType(Enum):
    """The five kinds of action the scoring service can select."""
    TEXT = 'TEXT'
    CARD = 'CARD'
    INTENT = 'INTENT'
    REMOTE_FUNCTION = 'REMOTE_FUNCTION'
    LOCAL_CALLBACK = 'LOCAL_CALLBACK'

    @classmethod
    def parse(cls, tag: str) -> 'ActionType':
        """Map a wire action-type tag to an ActionType.

        Accepts member names case-insensitively plus the service aliases
        API_AZURE and API_LOCAL.

        Raises:
            ValueError: If the tag names no known action type
        """
        if isinstance(tag, ActionType):
            return tag
        normalized = (tag or '').strip().upper()
        aliases = {'API_AZURE': cls.REMOTE_FUNCTION, 'API_LOCAL': cls.LOCAL_CALLBACK}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls[normalized]
        except KeyError:
            raise ValueError(f'Unknown action type: {tag!r}')


@dataclass
class PredictedEntity:
    """An entity recognized in a user utterance."""
    entity_id: str
    label: str
    value: str
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def positive_counterpart_id(self) -> Optional[str]:
        """Id of the positive entity this negative entity cancels, if any."""
        return (self.metadata or {}).get('positiveId') or None

    @property
    def positive_counterpart_label(self) -> Optional[str]:
        return (self.metadata or {}).get('positiveLabel') or None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PredictedEntity':
        return cls(entity_id=data.get('entityId', data.get('entity_id', '')),
                   label=data.get('entityName', data.get('label', '')),
                   value=data.get('entityText', data.get('value', '')),
                   score=float(data.get('score', 0.0) or 0.0),
                   metadata=data.get('metadata') or {})


@dataclass
class ExtractResponse:
    """Result of entity extraction for one utterance."""
    text: str
    predicted_entities: List[PredictedEntity] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractResponse':
        entities = [PredictedEntity.from_dict(e) for e in data.get('predictedEntities', []) if isinstance(e, dict)]
        return cls(text=data.get('text', ''), predicted_entities=entities)


@dataclass
class ScoreInput:
    """Request body for the scoring service."""
    filled_entities: List[Tuple[str, str]] = field(default_factory=list)  # (label, entity id) pairs
    context: Optional[Dict[str, Any]] = None
    masked_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filledEntities': [{'label': label, 'entityId': entity_id} for label, entity_id in self.filled_entities],
            'context': self.context,
            'maskedActions': list(self.masked_actions)
        }


@dataclass
class ScoredAction:
    """A ranked candidate action.

    The first whitespace-delimited token of the payload names the target
    (function, intent or callback) for non-text actions.
    """
    action_id: str
    payload: str
    action_type: ActionType
    score: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScoredAction':
        metadata = data.get('metadata') or {}
        tag = metadata.get('actionType') or data.get('actionType') or data.get('type')
        return cls(action_id=data.get('actionId', ''),
                   payload=data.get('payload', ''),
                   action_type=ActionType.parse(tag),
                   score=float(data.get('score', 0.0) or 0.0),
                   metadata=metadata)


@dataclass
class ScoreResponse:
    """Ranked actions returned by the scoring service."""
    scored_actions: List[ScoredAction] = field(default_factory=list)

    def best_action(self) -> Optional[ScoredAction]:
        if not self.scored_actions:
            return None
        return max(self.scored_actions, key=lambda action: action.score)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScoreResponse':
        actions = []
        for candidate in data.get('scoredActions', []):
            if not isinstance(candidate, dict):
                continue
            try:
                actions.append(ScoredAction.from_dict(candidate))
            except ValueError as e:
                logger.warning(f'Skipping scored action {candidate.get("actionId", "")}: {e}')
        return cls(scored_actions=actions)


@dataclass
class SessionRecord:
    """Persisted per-conversation session state."""
    app_id: Optional[str] = None
    session_id: Optional[str] = None
    model_id: Optional[str] = None
    in_teach: bool = False
    in_debug: bool = False
    address: Optional[str] = None  # JSON-serialized delivery address

    def to_dict(self) -> Dict[str, Any]:
        return {
            'appId': self.app_id,
            'sessionId': self.session_id,
            'modelId': self.model_id,
            'inTeach': self.in_teach,
            'inDebug': self.in_debug,
            'address': self.address
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionRecord':
        return cls(app_id=data.get('appId'),
                   session_id=data.get('sessionId'),
                   model_id=data.get('modelId'),
                   in_teach=bool(data.get('inTeach', False)),
                   in_debug=bool(data.get('inDebug', False)),
                   address=data.get('address'))


@dataclass
class TeachCueContinuation:
    """An intent begun in teach mode, wrapped so the trainer is cued when it ends."""
    intent: str
    entities: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'intent': self.intent, 'entities': dict(self.entities)}


@dataclass
class RecognizedResult:
    """Output of a host-side recognizer, consumed by the legacy completion path."""
    responses: List[Any] = field(default_factory=list)
    intent: Optional[str] = None
    entities: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
