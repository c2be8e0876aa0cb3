"""
Matrix client-server pieces of the bot

Contains:
- MatrixHttpApi: authenticated JSON transport over aiohttp
- EventDedupeWindow: bounded FIFO set of seen event IDs
- iter_actionable_events: timeline filtering down to the configured human
- MatrixBotSession: bootstrap, sync loop and shutdown
"""

from .event_dedupe import EventDedupeWindow
from .event_filter import ExitCommand, HumanMessage, iter_actionable_events
from .http_api import MatrixHttpApi
from .sender import new_txn_id, send_text
from .session import MatrixBotSession, SessionState, start_session

__all__ = [
    "EventDedupeWindow",
    "ExitCommand",
    "HumanMessage",
    "MatrixBotSession",
    "MatrixHttpApi",
    "SessionState",
    "iter_actionable_events",
    "new_txn_id",
    "send_text",
    "start_session",
]
