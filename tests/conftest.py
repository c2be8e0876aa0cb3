"""
Pytest configuration and shared fixtures for matrix-human-bot tests
"""
import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

from matrix_human_bot.config import BotConfig
from matrix_human_bot.matrix.http_api import MatrixHttpApi
from matrix_human_bot.matrix.session import MatrixBotSession

HOMESERVER = "http://hs.test"
ROOM_ID = "!room:hs.test"
HUMAN_ID = "@human:hs.test"
BOT_ID = "@bot:hs.test"


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def bot_config():
    """Minimal valid bot configuration"""
    return BotConfig(
        homeserver_url=HOMESERVER,
        access_token="bot-token",
        room_id=ROOM_ID,
        human_user_id=HUMAN_ID,
    )


# ============================================================================
# Sync Payload Fixtures
# ============================================================================

@pytest.fixture
def make_event():
    """Factory for raw m.room.message timeline events"""
    def _make(
        event_id: Optional[str],
        body: Optional[str] = "hello",
        sender: Optional[str] = HUMAN_ID,
        msgtype: str = "m.text",
        event_type: str = "m.room.message",
    ) -> Dict[str, Any]:
        event: Dict[str, Any] = {"type": event_type, "content": {"msgtype": msgtype}}
        if event_id is not None:
            event["event_id"] = event_id
        if sender is not None:
            event["sender"] = sender
        if body is not None:
            event["content"]["body"] = body
        return event
    return _make


@pytest.fixture
def make_sync():
    """Factory for /sync payloads scoped to the configured room"""
    def _make(
        next_batch: Optional[str],
        events: Optional[List[Dict[str, Any]]] = None,
        invites: Optional[List[str]] = None,
        room_id: str = ROOM_ID,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"rooms": {}}
        if next_batch is not None:
            payload["next_batch"] = next_batch
        if events is not None:
            payload["rooms"]["join"] = {room_id: {"timeline": {"events": events}}}
        if invites:
            payload["rooms"]["invite"] = {rid: {} for rid in invites}
        return payload
    return _make


# ============================================================================
# Session Fixtures
# ============================================================================

@pytest.fixture
def mock_api():
    """MatrixHttpApi double; sync behaviour is scripted per test"""
    api = Mock(spec=MatrixHttpApi)
    api.whoami = AsyncMock(return_value=BOT_ID)
    api.sync = AsyncMock(return_value={"next_batch": "s0"})
    api.join_room = AsyncMock(return_value=None)
    api.send_room_message = AsyncMock(return_value="$sent")
    api.close = AsyncMock(return_value=None)
    return api


@pytest.fixture
def callbacks():
    """Recording message/error/exit callbacks"""
    return Mock(
        message=AsyncMock(return_value=None),
        error=Mock(return_value=None),
        exit=AsyncMock(return_value=None),
    )


@pytest.fixture
def session(bot_config, mock_api, callbacks):
    """Session wired to the mock API with no back-off and no signal handlers"""
    s = MatrixBotSession(
        bot_config,
        api=mock_api,
        error_backoff_seconds=0,
        install_signal_handlers=False,
    )
    s.on_message(callbacks.message)
    s.on_error(callbacks.error)
    s.on_exit(callbacks.exit)
    return s


@pytest.fixture
def script_sync(mock_api):
    """
    Script successive api.sync results.

    Each item is either a payload dict or an exception instance to raise.
    Once the script runs out the session is stopped, without running the
    test's exit callback, so the loop ends.
    """
    def _script(session: MatrixBotSession, steps: List[Any]) -> None:
        remaining = list(steps)

        async def _sync(since=None, timeout_ms=30000):
            if not remaining:
                session.on_exit(None)
                await session.stop()
                return {}
            step = remaining.pop(0)
            if isinstance(step, BaseException):
                raise step
            return step

        mock_api.sync.side_effect = _sync
    return _script
