"""
Turn Orchestrator: drives extraction, scoring and action dispatch for each utterance.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..models.core import (TEACH_INTENT_WRAPPER, ExtractResponse, PredictedEntity, RecognizedResult, ScoredAction,
                           ScoreInput, TeachCueContinuation)
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.model_client import ModelClient
from ..utils.remote_functions import RemoteFunctionClient
from .action_dispatcher import ActionDispatcher, LocalCallback, RenderHook
from .conversation import Conversation, ConversationRegistry
from .delivery import DeliveryChannel
from .entity_memory import EntityMemory

logger = get_logger(__name__)

ScoreInputHook = Callable[[str, List[PredictedEntity], EntityMemory, ScoreInput],
                          Union[Optional[ScoreInput], Awaitable[Optional[ScoreInput]]]]


class DialogSetupError(Exception):
    """Custom exception for errors while building the orchestrator."""
    pass


class TurnOrchestrator:
    """Handle one user utterance at a time per conversation.

    In teach mode a turn only runs teach extraction. In normal mode it
    extracts entities, folds them into entity memory, scores actions with
    the updated memory and dispatches the best one.
    """

    def __init__(self,
                 registry: ConversationRegistry,
                 model_client: ModelClient,
                 dispatcher: ActionDispatcher,
                 score_input_hook: Optional[ScoreInputHook] = None,
                 default_app_id: Optional[str] = None,
                 teach_cue_text: Optional[str] = None):
        self.registry = registry
        self.model_client = model_client
        self.dispatcher = dispatcher
        self.score_input_hook = score_input_hook
        self.default_app_id = default_app_id or config.orchestrator.default_app_id or None
        self.teach_cue_text = teach_cue_text or config.orchestrator.teach_cue_text
        self._turn_locks: Dict[str, asyncio.Lock] = {}

    @property
    def channel(self) -> DeliveryChannel:
        return self.dispatcher.channel

    def _turn_lock(self, conversation_key: str) -> asyncio.Lock:
        lock = self._turn_locks.get(conversation_key)
        if lock is None:
            lock = self._turn_locks[conversation_key] = asyncio.Lock()
        return lock

    async def handle_utterance(self, conversation_key: str, text: str) -> Optional[ScoredAction]:
        """Process one utterance.

        Returns:
            The action that was dispatched, or None for teach turns and
            turns where scoring produced no candidates
        """
        while True:
            lock = self._turn_lock(conversation_key)
            async with lock:
                # end_session may have retired this lock while we waited
                if self._turn_locks.get(conversation_key) is not lock:
                    continue
                conversation = self.registry.get(conversation_key)
                return await self.process_input(conversation, text)

    async def end_session(self, conversation_key: str) -> Conversation:
        """End a conversation's session and release its handle and turn lock.

        Stored state survives; a later turn for the same key gets a new handle
        over the same store.
        """
        while True:
            lock = self._turn_lock(conversation_key)
            async with lock:
                if self._turn_locks.get(conversation_key) is not lock:
                    continue
                conversation = self.registry.get(conversation_key)
                await conversation.end_session()
                del self._turn_locks[conversation_key]
                self.registry.release(conversation_key)
                break
        logger.debug(f'Released handle and turn lock for conversation {conversation_key}')
        return conversation

    async def process_input(self, conversation: Conversation, text: str) -> Optional[ScoredAction]:
        state = await conversation.state.get()
        app_id = state.app_id or self.default_app_id
        session_id = state.session_id

        if state.in_teach:
            extract_response = await self.model_client.teach_extract(app_id, session_id, text)
            logger.debug(f'Teach extraction found {len(extract_response.predicted_entities)} entities '
                         f'in conversation {conversation.key}')
            return None

        extract_response = await self.model_client.session_extract(app_id, session_id, text)
        score_input = await self.build_score_input(conversation, extract_response)
        score_response = await self.model_client.session_score(app_id, session_id, score_input)

        best_action = score_response.best_action()
        if best_action is None:
            logger.debug(f'No scored actions for conversation {conversation.key}')
            return None

        await self.dispatcher.dispatch(best_action, conversation)
        return best_action

    async def build_score_input(self, conversation: Conversation, extract_response: ExtractResponse) -> ScoreInput:
        """Fold predicted entities into memory, in order, then build the score request."""
        memory = conversation.memory
        for entity in extract_response.predicted_entities:
            # A negative entity cancels its positive counterpart
            if entity.positive_counterpart_id:
                await memory.forget_by_label(entity)
            else:
                await memory.remember_by_label(entity)

        score_input = ScoreInput(filled_entities=await memory.remembered_ids(), context=None, masked_actions=[])

        if self.score_input_hook is not None:
            replacement = self.score_input_hook(extract_response.text, extract_response.predicted_entities, memory,
                                                score_input)
            if inspect.isawaitable(replacement):
                replacement = await replacement
            if replacement is not None:
                score_input = replacement

        return score_input

    async def finish_teach_intent(self, conversation: Conversation, continuation: TeachCueContinuation) -> None:
        """Cue the trainer for the next input once a wrapped intent has finished."""
        logger.debug(f'Intent {continuation.intent} finished in teach mode for conversation {conversation.key}')
        await self.channel.send_text(conversation.key, self.teach_cue_text)

    async def complete_recognized(self, conversation: Conversation, result: RecognizedResult) -> None:
        """Deliver a result produced by a host-side recognizer.

        An error result is forwarded to the user as text. Otherwise text
        responses are sent in order, anything else as an attachment, and a
        returned intent is begun (wrapped when the conversation is teaching).
        """
        if result.error:
            await self.channel.send_text(conversation.key, result.error)
            return

        for response in result.responses:
            if response is None:
                continue
            if isinstance(response, str):
                await self.channel.send_text(conversation.key, response)
            else:
                await self.channel.send_attachment(conversation.key, response)

        if not result.intent:
            return

        decided = asyncio.get_running_loop().create_future()
        conversation.state.in_teach_with_callback(lambda error, in_teach: decided.set_result(in_teach))
        if await decided:
            continuation = TeachCueContinuation(intent=result.intent, entities=result.entities)
            await self.channel.begin_dialog(conversation.key, TEACH_INTENT_WRAPPER, continuation.to_dict())
        else:
            await self.channel.begin_dialog(conversation.key, result.intent, result.entities)


def create_orchestrator(channel: DeliveryChannel,
                        local_callbacks: Optional[Dict[str, LocalCallback]] = None,
                        score_input_hook: Optional[ScoreInputHook] = None,
                        render_hook: Optional[RenderHook] = None,
                        registry: Optional[ConversationRegistry] = None) -> TurnOrchestrator:
    """Build an orchestrator from the global configuration.

    Raises:
        DialogSetupError: If any collaborator cannot be constructed
    """
    try:
        registry = registry or ConversationRegistry()
        model_client = ModelClient(config.model_service)
        remote_functions = RemoteFunctionClient(config.remote_functions)
        dispatcher = ActionDispatcher(channel,
                                      remote_functions=remote_functions,
                                      local_callbacks=local_callbacks,
                                      render_hook=render_hook)
        return TurnOrchestrator(registry, model_client, dispatcher, score_input_hook=score_input_hook)

    except Exception as e:
        logger.error(f'Failed to create turn orchestrator: {e}')
        raise DialogSetupError(f'Orchestrator setup failed: {e}')
