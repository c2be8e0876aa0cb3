"""
Example bot: acknowledges every message from the configured human and shuts
down when they send "exit" (or on SIGINT/SIGTERM).

    MATRIX_BOT_ACCESS_TOKEN=... MATRIX_ROOM_ID=!room:example.org \
    MATRIX_USER_ID=@me:example.org python -m matrix_human_bot
"""
import asyncio
import sys

from dotenv import load_dotenv

from matrix_human_bot.config import BotConfig, ConfigurationError
from matrix_human_bot.errors import MatrixClientError
from matrix_human_bot.logging_setup import setup_logging
from matrix_human_bot.matrix.session import MatrixBotSession


async def main() -> int:
    load_dotenv()
    try:
        config = BotConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(config.log_level)
    logger.info("Matrix bot starting up", extra={"config": {
        "homeserver_url": config.homeserver_url,
        "room_id": config.room_id,
        "human_user_id": config.human_user_id,
        "log_level": config.log_level,
    }})

    session = MatrixBotSession(config)

    async def handle_message(message: str, sender: str) -> None:
        logger.info("Message received", extra={"sender": sender, "body": message})
        await session.send_message(f'Ack: "{message}"')

    async def handle_exit() -> None:
        logger.info("'exit' received from user")
        await session.send_message("Received your 'exit'")

    def handle_error(error: Exception) -> None:
        logger.warning("Matrix error", extra={"error": str(error)})

    session.on_message(handle_message)
    session.on_exit(handle_exit)
    session.on_error(handle_error)

    async with session:
        try:
            await session.initialize()
        except MatrixClientError as e:
            logger.error("Failed to start Matrix session", extra={"error": str(e)}, exc_info=True)
            return 1

        session.start()
        try:
            await session.send_message(f"Matrix Bot is online. Say something, {config.human_user_id}.")
        except MatrixClientError as e:
            logger.error("Failed to reach room", extra={"room_id": config.room_id, "error": str(e)},
                         exc_info=True)
            # No goodbye to a room that just rejected the greeting
            session.on_exit(None)
            return 1
        await session.wait_stopped()

    logger.info("End of main loop")
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
