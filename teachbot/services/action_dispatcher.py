"""
Action Dispatcher: executes the side effects of a selected action.
"""

import inspect
from typing import Awaitable, Callable, Dict, Optional, Union

from ..models.core import TEACH_INTENT_WRAPPER, ActionType, ScoredAction, TeachCueContinuation
from ..utils.logging_config import get_logger
from ..utils.remote_functions import RemoteFunctionClient
from ..utils.text_utils import split_payload
from .conversation import Conversation
from .delivery import DeliveryChannel
from .entity_memory import EntityMemory

logger = get_logger(__name__)

LocalCallback = Callable[[EntityMemory, str], Union[Optional[str], Awaitable[Optional[str]]]]
RenderHook = Callable[[str, EntityMemory], Union[str, Awaitable[str]]]


class ConfigurationError(Exception):
    """Custom exception for dispatcher configuration errors."""
    pass


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


class ActionDispatcher:
    """Run a scored action against a conversation.

    Configuration problems found while dispatching (no callback table, an
    unknown callback, no remote function target) are logged and end the
    action without sending anything. Delivery and remote service failures
    propagate to the caller.
    """

    def __init__(self,
                 channel: DeliveryChannel,
                 remote_functions: Optional[RemoteFunctionClient] = None,
                 local_callbacks: Optional[Dict[str, LocalCallback]] = None,
                 render_hook: Optional[RenderHook] = None):
        """
        Initialize the dispatcher.

        Args:
            channel: Where text, attachments and sub-dialogs go
            remote_functions: Client for REMOTE_FUNCTION actions
            local_callbacks: Mapping of callback name to callable(memory, args)
            render_hook: Optional rewrite of TEXT output after substitution

        Raises:
            ConfigurationError: If a callback entry is not callable
        """
        if local_callbacks is not None:
            for name, callback in local_callbacks.items():
                if not name or not callable(callback):
                    raise ConfigurationError(f'Local callback {name!r} is not callable')

        self.channel = channel
        self.remote_functions = remote_functions
        self.local_callbacks = dict(local_callbacks) if local_callbacks is not None else None
        self.render_hook = render_hook

        self._handlers = {
            ActionType.TEXT: self.take_text_action,
            ActionType.CARD: self.take_card_action,
            ActionType.INTENT: self.take_intent_action,
            ActionType.REMOTE_FUNCTION: self.take_remote_function_action,
            ActionType.LOCAL_CALLBACK: self.take_local_callback_action,
        }

    async def dispatch(self, action: ScoredAction, conversation: Conversation) -> None:
        logger.debug(f'Taking {action.action_type.name} action {action.action_id} in conversation {conversation.key}')
        await self._handlers[action.action_type](action, conversation)

    async def take_text_action(self, action: ScoredAction, conversation: Conversation) -> None:
        text = await conversation.memory.substitute(action.payload)
        if self.render_hook is not None:
            text = await _resolve(self.render_hook(text, conversation.memory))
        await self.channel.send_text(conversation.key, text)

    async def take_card_action(self, action: ScoredAction, conversation: Conversation) -> None:
        # Card rendering belongs to the presentation layer
        logger.debug(f'Card action {action.action_id} is not rendered by the orchestrator')

    async def take_intent_action(self, action: ScoredAction, conversation: Conversation) -> None:
        intent_name, args = split_payload(action.payload)
        if not intent_name:
            logger.error(f'Intent action {action.action_id} has no intent name')
            return

        entities = await conversation.memory.get_entities(args)

        if await conversation.state.in_teach():
            # Wrapped so the trainer gets a cue when the intent completes
            continuation = TeachCueContinuation(intent=intent_name, entities=entities)
            await self.channel.begin_dialog(conversation.key, TEACH_INTENT_WRAPPER, continuation.to_dict())
        else:
            await self.channel.begin_dialog(conversation.key, intent_name, entities)

    async def take_remote_function_action(self, action: ScoredAction, conversation: Conversation) -> None:
        function_name, args = split_payload(action.payload)
        if not function_name:
            logger.error(f'Remote function action {action.action_id} has no function name')
            return
        if self.remote_functions is None or not self.remote_functions.configured:
            logger.error(f'No remote function endpoint configured for {function_name}')
            return

        args = await conversation.memory.substitute_entities(args)
        output = await self.remote_functions.invoke(function_name, args)
        if output:
            await self.channel.send_text(conversation.key, str(output))

    async def take_local_callback_action(self, action: ScoredAction, conversation: Conversation) -> None:
        if not self.local_callbacks:
            logger.error('No local callbacks defined')
            return

        callback_name, args = split_payload(action.payload)
        callback = self.local_callbacks.get(callback_name)
        if callback is None:
            logger.error(f'Local callback {callback_name!r} undefined')
            return

        args = await conversation.memory.substitute_entities(args)
        output = await _resolve(callback(conversation.memory, args))
        if output:
            await self.channel.send_text(conversation.key, str(output))
