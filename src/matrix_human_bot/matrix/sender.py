import logging
import time
import uuid
from typing import Optional

from matrix_human_bot.matrix.http_api import MatrixHttpApi

logger = logging.getLogger("matrix_human_bot.sender")


def new_txn_id() -> str:
    """Fresh transaction id: epoch milliseconds plus a random suffix"""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


async def send_text(api: MatrixHttpApi, room_id: str, text: str) -> Optional[str]:
    """
    Send one m.text message and return its event_id.

    A new transaction id is minted per call, so a failed send is raised to the
    caller (TransportError) rather than retried.
    """
    txn_id = new_txn_id()
    content = {"msgtype": "m.text", "body": text}
    event_id = await api.send_room_message(room_id, txn_id, content)
    logger.debug("Sent message", extra={"room_id": room_id, "txn_id": txn_id, "event_id": event_id})
    return event_id
