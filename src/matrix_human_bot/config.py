import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

MessageCallback = Callable[[str, str], Union[Awaitable[None], None]]
ErrorCallback = Callable[[Exception], Union[Awaitable[None], None]]
ExitCallback = Callable[[], Union[Awaitable[None], None]]

DEFAULT_HOMESERVER = "https://matrix.org"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


@dataclass(frozen=True)
class BotConfig:
    homeserver_url: str
    access_token: str
    room_id: str
    # The only sender whose messages are dispatched
    human_user_id: str
    log_level: str = "INFO"
    on_message: Optional[MessageCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_exit: Optional[ExitCallback] = None

    def __post_init__(self):
        if not self.access_token:
            raise ConfigurationError("Missing bot access token")
        if not self.room_id:
            raise ConfigurationError("Missing room id")
        if not self.human_user_id:
            raise ConfigurationError("Missing human user id")
        object.__setattr__(self, "homeserver_url", self.homeserver_url.rstrip("/"))

    @classmethod
    def from_env(cls, **callbacks) -> "BotConfig":
        """Load configuration from environment variables"""
        token = os.getenv("MATRIX_BOT_ACCESS_TOKEN", "")
        room_id = os.getenv("MATRIX_ROOM_ID", "")
        if not token or not room_id:
            raise ConfigurationError("Missing MATRIX_BOT_ACCESS_TOKEN or MATRIX_ROOM_ID")

        return cls(
            homeserver_url=os.getenv("MATRIX_HOMESERVER", DEFAULT_HOMESERVER),
            access_token=token,
            room_id=room_id,
            human_user_id=os.getenv("MATRIX_USER_ID", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            **callbacks,
        )
