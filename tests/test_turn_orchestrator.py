import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import FakeModelClient, entity, run
from teachbot.models.core import (TEACH_INTENT_WRAPPER, ActionType, ExtractResponse, RecognizedResult, ScoredAction,
                                  ScoreInput, ScoreResponse, TeachCueContinuation)
from teachbot.services.action_dispatcher import ActionDispatcher
from teachbot.services.delivery import RecordingChannel
from teachbot.services.turn_orchestrator import TurnOrchestrator
from teachbot.utils.config import ModelServiceConfig
from teachbot.utils.model_client import ModelClient, ModelServiceError


def scored(action_type, payload, score=1.0):
    return ScoredAction(action_id=payload, payload=payload, action_type=action_type, score=score)


async def start(conversation, in_teach=False):
    await conversation.init('app-1')
    await conversation.start_session('sess-1', in_teach)


def test_normal_turn_remembers_and_substitutes(orchestrator, model_client, conversation, channel):
    model_client.extract = ExtractResponse(text="it's cold", predicted_entities=[entity('temp', 'cold')])
    model_client.score = ScoreResponse([scored(ActionType.TEXT, 'Brr, it is {temp}.')])

    async def scenario():
        await start(conversation)
        taken = await orchestrator.handle_utterance('conv-1', "it's cold")
        return taken, await conversation.memory.value('temp')

    taken, remembered = run(scenario())
    assert remembered == 'cold'
    assert taken.payload == 'Brr, it is {temp}.'
    assert channel.texts == ['Brr, it is cold.']
    assert [call[0] for call in model_client.calls] == ['session_extract', 'session_score']
    assert model_client.calls[0][1:] == ('app-1', 'sess-1', "it's cold")
    assert model_client.score_inputs[0].filled_entities == [('temp', 'id-temp')]


def test_teach_turn_extracts_only(orchestrator, model_client, conversation, channel):
    model_client.extract = ExtractResponse(text="it's cold", predicted_entities=[entity('temp', 'cold')])
    model_client.score = ScoreResponse([scored(ActionType.TEXT, 'Brr, it is {temp}.')])

    async def scenario():
        await start(conversation, in_teach=True)
        taken = await orchestrator.handle_utterance('conv-1', "it's cold")
        return taken, await conversation.memory.remembered_ids()

    taken, ids = run(scenario())
    assert taken is None
    assert ids == []
    assert [call[0] for call in model_client.calls] == ['teach_extract']
    assert channel.events == []


def test_teach_mode_intent_is_wrapped(orchestrator, model_client, conversation, channel):
    model_client.score = ScoreResponse([scored(ActionType.INTENT, 'bookFlight dest=SEA')])

    async def scenario():
        await start(conversation)
        # Teach flag flips after extraction has been routed through the normal path
        original = model_client.session_score

        async def score_then_teach(app_id, session_id, score_input):
            await conversation.state.set_in_teach(True)
            return await original(app_id, session_id, score_input)

        model_client.session_score = score_then_teach
        await orchestrator.handle_utterance('conv-1', 'fly me to seattle')

    run(scenario())
    event = channel.events[0]
    assert event.content == TEACH_INTENT_WRAPPER
    assert event.args == {'intent': 'bookFlight', 'entities': {'dest': 'SEA'}}


def test_empty_ranking_ends_turn_silently(orchestrator, model_client, conversation, channel):

    async def scenario():
        await start(conversation)
        return await orchestrator.handle_utterance('conv-1', 'hmm')

    assert run(scenario()) is None
    assert channel.events == []


def test_highest_scoring_action_is_taken(orchestrator, model_client, conversation, channel):
    model_client.score = ScoreResponse([scored(ActionType.TEXT, 'second', 0.4), scored(ActionType.TEXT, 'first', 0.8)])

    async def scenario():
        await start(conversation)
        await orchestrator.handle_utterance('conv-1', 'hi')

    run(scenario())
    assert channel.texts == ['first']


def test_entities_applied_in_order_before_scoring(orchestrator, model_client, conversation):
    model_client.extract = ExtractResponse(text='x',
                                           predicted_entities=[
                                               entity('spicy', 'spicy', 'pos-1'),
                                               entity('city', 'Paris'),
                                               entity('not-spicy', 'mild', 'neg-1', positiveId='pos-1'),
                                               entity('city', 'Oslo', 'id-oslo'),
                                           ])

    async def scenario():
        await start(conversation)
        await orchestrator.handle_utterance('conv-1', 'x')

    run(scenario())
    assert model_client.score_inputs[0].filled_entities == [('city', 'id-oslo')]


def test_score_input_hook_can_replace_request(registry, channel, conversation):
    model_client = FakeModelClient(extract=ExtractResponse(text='x', predicted_entities=[entity('a', '1')]))
    seen = []

    async def hook(text, predicted, memory, score_input):
        seen.append((text, [e.label for e in predicted], score_input.filled_entities))
        return ScoreInput(filled_entities=score_input.filled_entities, masked_actions=['act-9'])

    turns = TurnOrchestrator(registry, model_client, ActionDispatcher(channel), score_input_hook=hook)

    async def scenario():
        await start(conversation)
        await turns.handle_utterance('conv-1', 'x')

    run(scenario())
    assert seen == [('x', ['a'], [('a', 'id-a')])]
    assert model_client.score_inputs[0].masked_actions == ['act-9']


def test_delivery_failure_propagates_and_keeps_memory(registry, conversation):

    class BrokenChannel(RecordingChannel):

        async def send_text(self, conversation_key, text):
            raise ConnectionError('channel down')

    model_client = FakeModelClient(extract=ExtractResponse(text='x', predicted_entities=[entity('temp', 'cold')]),
                                   score=ScoreResponse([scored(ActionType.TEXT, '{temp}')]))
    turns = TurnOrchestrator(registry, model_client, ActionDispatcher(BrokenChannel()))

    async def scenario():
        await start(conversation)
        with pytest.raises(ConnectionError):
            await turns.handle_utterance('conv-1', 'x')
        return await conversation.memory.value('temp')

    assert run(scenario()) == 'cold'


def test_extraction_failure_aborts_turn(registry, channel, conversation):

    class BrokenModel(FakeModelClient):

        async def session_extract(self, app_id, session_id, text):
            raise RuntimeError('service unavailable')

    turns = TurnOrchestrator(registry, BrokenModel(), ActionDispatcher(channel))

    async def scenario():
        await start(conversation)
        with pytest.raises(RuntimeError):
            await turns.handle_utterance('conv-1', 'x')

    run(scenario())
    assert channel.events == []


def test_turns_for_one_conversation_do_not_interleave(registry, channel, conversation):
    order = []

    class SlowModel(FakeModelClient):

        async def session_extract(self, app_id, session_id, text):
            order.append(f'start {text}')
            await asyncio.sleep(0.01)
            order.append(f'end {text}')
            return ExtractResponse(text=text)

    turns = TurnOrchestrator(registry, SlowModel(), ActionDispatcher(channel))

    async def scenario():
        await start(conversation)
        await asyncio.gather(turns.handle_utterance('conv-1', 'one'), turns.handle_utterance('conv-1', 'two'))

    run(scenario())
    assert order == ['start one', 'end one', 'start two', 'end two']


def test_finish_teach_intent_cues_trainer(orchestrator, conversation, channel):
    run(orchestrator.finish_teach_intent(conversation, TeachCueContinuation(intent='bookFlight')))
    assert channel.texts == ['Next input?']


def test_complete_recognized_forwards_error(orchestrator, conversation, channel):
    run(orchestrator.complete_recognized(conversation, RecognizedResult(responses=['ignored'], error='bad input')))
    assert channel.texts == ['bad input']


def test_complete_recognized_sends_responses_and_begins_intent(orchestrator, conversation, channel):
    card = {'contentType': 'application/vnd.card'}
    result = RecognizedResult(responses=['hello', None, card], intent='bookFlight', entities={'dest': 'SEA'})

    run(orchestrator.complete_recognized(conversation, result))
    assert [(event.kind, event.content) for event in channel.events] == [('text', 'hello'), ('attachment', card),
                                                                         ('dialog', 'bookFlight')]
    assert channel.events[-1].args == {'dest': 'SEA'}


def test_complete_recognized_wraps_intent_when_teaching(orchestrator, conversation, channel):

    async def scenario():
        await conversation.state.set_in_teach(True)
        await orchestrator.complete_recognized(conversation, RecognizedResult(intent='bookFlight'))

    run(scenario())
    assert channel.events[0].content == TEACH_INTENT_WRAPPER
    assert channel.events[0].args == {'intent': 'bookFlight', 'entities': {}}


def test_turn_without_session_fails_before_calling_the_service(registry, channel, conversation):
    session = MagicMock()
    model = ModelClient(ModelServiceConfig(service_uri='http://model.local/api',
                                          user='',
                                          secret='',
                                          timeout=5.0,
                                          retry_attempts=1,
                                          retry_delay=0.0),
                        session=session)
    turns = TurnOrchestrator(registry, model, ActionDispatcher(channel))

    async def scenario():
        await conversation.init('app-1')
        with pytest.raises(ModelServiceError):
            await turns.handle_utterance('conv-1', 'hello')

    run(scenario())
    session.post.assert_not_called()
    assert channel.events == []


def test_end_session_releases_conversation_handle_and_lock(orchestrator, registry, model_client, conversation):

    async def scenario():
        await start(conversation)
        await conversation.memory.remember_by_label(entity('city', 'Paris'))
        await orchestrator.handle_utterance('conv-1', 'hi')
        ended = await orchestrator.end_session('conv-1')
        return ended

    ended = run(scenario())
    assert ended is conversation
    assert 'conv-1' not in registry
    assert 'conv-1' not in orchestrator._turn_locks

    fresh = registry.get('conv-1')
    assert fresh is not conversation
    record = run(fresh.state.get())
    assert (record.app_id, record.session_id, record.in_teach) == ('app-1', None, False)
    assert run(fresh.memory.remembered_ids()) == []


def test_many_ended_conversations_leave_nothing_behind(orchestrator, registry):

    async def scenario():
        for n in range(50):
            key = f'conv-{n}'
            conversation = registry.get(key)
            await start(conversation)
            await orchestrator.handle_utterance(key, 'hi')
            await orchestrator.end_session(key)

    run(scenario())
    assert orchestrator._turn_locks == {}
    assert registry._conversations == {}


def test_turn_waiting_on_end_session_runs_after_it(orchestrator, model_client, conversation):

    async def scenario():
        await start(conversation)
        await asyncio.gather(orchestrator.end_session('conv-1'), orchestrator.handle_utterance('conv-1', 'late'))

    run(scenario())
    assert model_client.calls[-1] == ('session_extract', 'app-1', None, 'late')
