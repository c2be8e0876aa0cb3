"""Long-polling Matrix bot that talks to exactly one human in one room."""

from .config import BotConfig, ConfigurationError
from .errors import (
    AuthError,
    CallbackError,
    MalformedResponseError,
    MatrixClientError,
    TransportError,
)
from .logging_setup import setup_logging
from .matrix import MatrixBotSession, MatrixHttpApi, SessionState, start_session

__version__ = "0.1.0"

__all__ = [
    "AuthError",
    "BotConfig",
    "CallbackError",
    "ConfigurationError",
    "MalformedResponseError",
    "MatrixBotSession",
    "MatrixClientError",
    "MatrixHttpApi",
    "SessionState",
    "TransportError",
    "setup_logging",
    "start_session",
]
