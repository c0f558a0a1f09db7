import asyncio
from typing import List, Optional

import pytest

from teachbot.models.core import ExtractResponse, PredictedEntity, ScoreInput, ScoreResponse
from teachbot.services.action_dispatcher import ActionDispatcher
from teachbot.services.conversation import ConversationRegistry
from teachbot.services.delivery import RecordingChannel
from teachbot.services.keyed_store import InMemoryBackend
from teachbot.services.turn_orchestrator import TurnOrchestrator


def run(coro):
    return asyncio.run(coro)


def entity(label: str, value: str, entity_id: Optional[str] = None, **metadata) -> PredictedEntity:
    return PredictedEntity(entity_id=entity_id or f'id-{label}', label=label, value=value, metadata=metadata)


class FakeModelClient:
    """Stands in for the extraction/scoring service and records every call."""

    def __init__(self, extract: Optional[ExtractResponse] = None, score: Optional[ScoreResponse] = None):
        self.extract = extract or ExtractResponse(text='')
        self.score = score or ScoreResponse()
        self.calls: List[tuple] = []
        self.score_inputs: List[ScoreInput] = []

    async def session_extract(self, app_id, session_id, text):
        self.calls.append(('session_extract', app_id, session_id, text))
        return self.extract

    async def teach_extract(self, app_id, session_id, text):
        self.calls.append(('teach_extract', app_id, session_id, text))
        return self.extract

    async def session_score(self, app_id, session_id, score_input):
        self.calls.append(('session_score', app_id, session_id))
        self.score_inputs.append(score_input)
        return self.score


class FakeRemoteFunctions:
    configured = True

    def __init__(self, result='done'):
        self.result = result
        self.calls: List[tuple] = []

    async def invoke(self, function_name, args):
        self.calls.append((function_name, args))
        return self.result


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def registry(backend):
    return ConversationRegistry(backend=backend, namespace='test')


@pytest.fixture
def conversation(registry):
    return registry.get('conv-1')


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def orchestrator(registry, channel, model_client):
    dispatcher = ActionDispatcher(channel, remote_functions=FakeRemoteFunctions())
    return TurnOrchestrator(registry, model_client, dispatcher, teach_cue_text='Next input?')
