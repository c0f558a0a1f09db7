"""
MCP Interface Layer using fastmcp to drive conversation turns from an agent host.
"""
import os
import sys
from typing import Any, Dict, List

from fastmcp import FastMCP

# Add package root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from teachbot.services.delivery import RecordingChannel  # noqa: E402
from teachbot.services.keyed_store import KeyedStoreError  # noqa: E402
from teachbot.services.turn_orchestrator import DialogSetupError, create_orchestrator  # noqa: E402
from teachbot.utils.config import config  # noqa: E402
from teachbot.utils.health_check import get_system_info  # noqa: E402
from teachbot.utils.logging_config import get_logger  # noqa: E402
from teachbot.utils.model_client import ModelServiceError  # noqa: E402
from teachbot.utils.remote_functions import RemoteFunctionError  # noqa: E402

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Teach Bot')
channel = RecordingChannel()

try:
    orchestrator = create_orchestrator(channel)
except DialogSetupError as e:
    logger.error(f'Turn orchestrator unavailable: {e}')
    orchestrator = None


def _require_orchestrator():
    if orchestrator is None:
        raise Exception('Turn orchestrator is not available; check configuration and logs')
    return orchestrator


def _require_id(conversation_id: str) -> str:
    if not conversation_id or not conversation_id.strip():
        raise ValueError('Conversation ID is required')
    return conversation_id.strip()


@mcp.tool()
async def handle_utterance(conversation_id: str, text: str) -> List[Dict[str, Any]]:
    """Run one user utterance through extraction, scoring and dispatch.

    Args:
        conversation_id: Conversation key
        text: The user's utterance

    Returns:
        Outbound events (text, attachment, dialog) produced by the turn

    Raises:
        Exception: If the turn fails
    """
    conversation_id = _require_id(conversation_id)
    turns = _require_orchestrator()

    try:
        await turns.handle_utterance(conversation_id, text or '')
        events = [event.to_dict() for event in channel.drain(conversation_id)]
        logger.debug(f'MCP turn produced {len(events)} events for conversation {conversation_id}')
        return events

    except (ModelServiceError, RemoteFunctionError, KeyedStoreError) as e:
        channel.drain(conversation_id)
        logger.error(f'Service error in MCP turn: {e}')
        raise Exception(f'Turn failed: {e}')
    except Exception as e:
        channel.drain(conversation_id)
        logger.error(f'Unexpected error in MCP turn: {e}')
        raise Exception(f'Turn failed: {e}')


@mcp.tool()
async def start_session(conversation_id: str, app_id: str, session_id: str, in_teach: bool = False) -> Dict[str, Any]:
    """Start a new session under an application.

    Args:
        conversation_id: Conversation key
        app_id: Application whose model serves the session
        session_id: Session id issued by the model service
        in_teach: Start in teach mode (default: False)

    Returns:
        The resulting session state
    """
    conversation = _require_orchestrator().registry.get(_require_id(conversation_id))
    await conversation.init(app_id)
    await conversation.start_session(session_id, in_teach)
    return await conversation.state.to_dict()


@mcp.tool()
async def end_session(conversation_id: str) -> Dict[str, Any]:
    """End the current session and forget remembered entities."""
    conversation = await _require_orchestrator().end_session(_require_id(conversation_id))
    return await conversation.state.to_dict()


@mcp.tool()
async def set_teach_mode(conversation_id: str, in_teach: bool) -> Dict[str, Any]:
    """Switch a conversation between teach and normal mode."""
    conversation = _require_orchestrator().registry.get(_require_id(conversation_id))
    await conversation.state.set_in_teach(in_teach)
    return await conversation.state.to_dict()


@mcp.tool()
async def get_session_state(conversation_id: str) -> Dict[str, Any]:
    """Return the stored session state and remembered entities."""
    conversation = _require_orchestrator().registry.get(_require_id(conversation_id))
    state = await conversation.state.to_dict()
    state['entities'] = [list(pair) for pair in await conversation.memory.remembered_ids()]
    return state


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report configuration and health of external services."""
    backend = orchestrator.registry.backend if orchestrator is not None else None
    return get_system_info(backend)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
