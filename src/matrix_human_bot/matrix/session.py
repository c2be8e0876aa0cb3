"""
Matrix bot session: bootstrap, long-poll sync loop and callback dispatch.

Lifecycle:
1. initialize() resolves the bot's own user ID and fetches a fresh sync
   token, discarding any backlog accumulated while the bot was offline.
2. start() spawns the sync loop as a single asyncio task.
3. The loop polls /sync, adopts each next_batch immediately, joins invited
   rooms and dispatches plain-text messages from the configured human to
   the message callback, one at a time.
4. stop() (also reached by an "exit" message or SIGINT/SIGTERM) runs the exit
   callback once and ends the loop after its current poll returns.

Steady-state failures never escape the loop: they are logged, passed to the
error callback and retried after a fixed back-off.
"""
import asyncio
import inspect
import logging
import signal
from enum import Enum
from typing import Any, List, Mapping, Optional

from matrix_human_bot.config import BotConfig, ErrorCallback, ExitCallback, MessageCallback
from matrix_human_bot.errors import AuthError, CallbackError, MatrixClientError, TransportError
from matrix_human_bot.matrix.event_dedupe import EventDedupeWindow
from matrix_human_bot.matrix.event_filter import (
    ExitCommand,
    extract_invited_room_ids,
    extract_next_batch,
    extract_room_timeline_events,
    iter_actionable_events,
)
from matrix_human_bot.matrix.http_api import DEFAULT_POLL_TIMEOUT_MS, MatrixHttpApi
from matrix_human_bot.matrix.sender import send_text

logger = logging.getLogger("matrix_human_bot.session")

ERROR_BACKOFF_SECONDS = 2.0
TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class MatrixBotSession:
    """One bot identity talking to one human in one room"""

    def __init__(
        self,
        config: BotConfig,
        api: Optional[MatrixHttpApi] = None,
        *,
        poll_timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
        error_backoff_seconds: float = ERROR_BACKOFF_SECONDS,
        dedupe: Optional[EventDedupeWindow] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config
        self._api = api or MatrixHttpApi(config.homeserver_url, config.access_token)
        self._poll_timeout_ms = poll_timeout_ms
        self._error_backoff_seconds = error_backoff_seconds
        self._dedupe = dedupe if dedupe is not None else EventDedupeWindow()
        self._install_signal_handlers = install_signal_handlers

        self._message_callback: Optional[MessageCallback] = config.on_message
        self._error_callback: Optional[ErrorCallback] = config.on_error
        self._exit_callback: Optional[ExitCallback] = config.on_exit

        self._bot_user_id: Optional[str] = None
        self._since: Optional[str] = None
        self._state = SessionState.STOPPED
        self._stopping = False
        self._stop_requested = False
        self._dispatching = False
        self._initialized = False
        self._loop_task: Optional[asyncio.Task] = None
        self._signal_loop: Optional[asyncio.AbstractEventLoop] = None
        self._signal_task: Optional[asyncio.Future] = None

    # ------------------------------------------------------------------
    # Properties and callback registration
    # ------------------------------------------------------------------

    @property
    def bot_user_id(self) -> Optional[str]:
        return self._bot_user_id

    @property
    def since(self) -> Optional[str]:
        return self._since

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SessionState.RUNNING and not self._stopping

    @property
    def dedupe(self) -> EventDedupeWindow:
        return self._dedupe

    def on_message(self, callback: Optional[MessageCallback]) -> None:
        """Register the handler for messages from the human ("exit" never reaches it)"""
        self._message_callback = callback

    def on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._error_callback = callback

    def on_exit(self, callback: Optional[ExitCallback]) -> None:
        """
        Register the handler run once on "exit" or SIGINT/SIGTERM, before the loop
        stops. A signal that arrives while a message callback is running is
        deferred until that callback returns.
        """
        self._exit_callback = callback

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def initialize(self) -> str:
        """
        Resolve the bot's user ID and adopt a fresh sync token.

        Returns:
            The bot's own Matrix user ID

        Raises:
            AuthError: The homeserver rejected the access token
            TransportError: The homeserver could not be reached
            MatrixClientError: The session was already initialized
        """
        if self._initialized:
            raise MatrixClientError("Session already initialized")
        self._initialized = True

        try:
            self._bot_user_id = await self._api.whoami()
        except TransportError as e:
            if e.status_code is None:
                raise
            raise AuthError(f"Access token rejected by homeserver: {e}") from e
        logger.info("Logged in", extra={"user_id": self._bot_user_id})

        # Timeout 0 returns immediately; only the token is kept
        boot = await self._api.sync(since=None, timeout_ms=0)
        self._since = extract_next_batch(boot)
        logger.info("Bootstrapped sync token", extra={"since": self._since})

        if self._install_signal_handlers:
            self._add_signal_handlers()

        return self._bot_user_id

    def _add_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            for sig in TERMINATION_SIGNALS:
                loop.add_signal_handler(sig, self._on_termination_signal, sig)
        except (NotImplementedError, RuntimeError, ValueError) as e:
            logger.warning("Signal handlers unavailable, stop() must be called explicitly",
                           extra={"error": str(e)})
            return
        self._signal_loop = loop

    def _remove_signal_handlers(self) -> None:
        if self._signal_loop is None:
            return
        for sig in TERMINATION_SIGNALS:
            self._signal_loop.remove_signal_handler(sig)
        self._signal_loop = None

    def _on_termination_signal(self, sig: signal.Signals) -> None:
        logger.info("Shutdown signal received", extra={"signal": sig.name})
        if self._dispatching:
            # Let the loop stop once the current message callback returns
            self._stop_requested = True
            return
        if self._signal_task is None or self._signal_task.done():
            self._signal_task = asyncio.ensure_future(self.stop())

    # ------------------------------------------------------------------
    # Sync loop
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """
        Spawn the sync loop task. Repeated calls return the same task; a
        session that has stopped is not restarted.
        """
        if not self._initialized or self._bot_user_id is None:
            raise MatrixClientError("initialize() must complete before start()")
        if self._loop_task is not None:
            if self._loop_task.done():
                logger.warning("Sync loop already finished; sessions cannot be restarted")
            return self._loop_task

        self._state = SessionState.RUNNING
        self._loop_task = asyncio.create_task(self._sync_loop(), name="matrix-sync-loop")
        return self._loop_task

    async def _sync_loop(self) -> None:
        logger.info("Sync loop started", extra={"since": self._since, "room_id": self.config.room_id})
        while self.running:
            try:
                await self._sync_once()
            except Exception as e:
                await self._report_error(e)
                if self.running and not self._stop_requested:
                    await asyncio.sleep(self._error_backoff_seconds)
            if self._stop_requested:
                await self.stop()
        logger.info("Sync loop stopped", extra={"since": self._since})

    async def _sync_once(self) -> None:
        payload = await self._api.sync(since=self._since, timeout_ms=self._poll_timeout_ms)

        # Adopt before processing so a failing batch is not fetched again
        next_batch = extract_next_batch(payload)
        if next_batch:
            self._since = next_batch

        if not self.running:
            return

        for room_id in extract_invited_room_ids(payload):
            await self._join_invited_room(room_id)

        events = extract_room_timeline_events(payload, self.config.room_id)
        await self._dispatch(events)

    async def _join_invited_room(self, room_id: str) -> None:
        logger.info("Invited to room, joining", extra={"room_id": room_id})
        try:
            await self._api.join_room(room_id)
        except Exception as e:
            await self._report_error(e)

    async def _dispatch(self, events: List[Mapping[str, Any]]) -> None:
        actionable = iter_actionable_events(
            events,
            self._dedupe,
            bot_user_id=self._bot_user_id,
            human_user_id=self.config.human_user_id,
        )
        for item in actionable:
            if isinstance(item, ExitCommand):
                logger.info("Exit command received", extra={"sender": item.sender, "event_id": item.event_id})
                await self.stop()
                return

            if not self.running or self._stop_requested:
                return

            logger.debug("Dispatching message", extra={"sender": item.sender, "event_id": item.event_id})
            callback = self._message_callback
            if callback is None:
                continue
            self._dispatching = True
            try:
                await _maybe_await(callback(item.body, item.sender))
            except Exception as e:
                raise CallbackError("on_message", e) from e
            finally:
                self._dispatching = False

    async def _report_error(self, error: Exception) -> None:
        logger.error(
            "Sync loop error",
            extra={"error": str(error), "error_type": type(error).__name__},
            exc_info=error,
        )
        callback = self._error_callback
        if callback is None:
            return
        try:
            await _maybe_await(callback(error))
        except Exception:
            logger.exception("Error callback raised")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """
        Run the exit callback and stop the loop. Safe to call repeatedly or
        before start(); the loop finishes its in-flight poll before exiting.
        """
        if self._state is not SessionState.RUNNING or self._stopping:
            return
        self._stopping = True
        logger.info("Stopping Matrix session")
        try:
            callback = self._exit_callback
            if callback is not None:
                await _maybe_await(callback())
        except Exception as e:
            await self._report_error(CallbackError("on_exit", e))
        finally:
            self._state = SessionState.STOPPED

    async def wait_stopped(self) -> None:
        """Wait until the sync loop task has finished"""
        if self._signal_task is not None and self._signal_task is not asyncio.current_task():
            await self._signal_task
        task = self._loop_task
        if task is not None and task is not asyncio.current_task():
            await task

    async def close(self) -> None:
        await self.stop()
        await self.wait_stopped()
        self._remove_signal_handlers()
        await self._api.close()

    async def __aenter__(self) -> "MatrixBotSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> Optional[str]:
        """Send a text message to the configured room; raises TransportError on failure"""
        return await send_text(self._api, self.config.room_id, text)


async def start_session(config: BotConfig, **kwargs: Any) -> MatrixBotSession:
    """Build, initialize and start a session in one call"""
    session = MatrixBotSession(config, **kwargs)
    await session.initialize()
    session.start()
    return session
