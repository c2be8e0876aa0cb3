"""
Helpers for turning Matrix `/sync` payloads into actionable bot input.

`iter_actionable_events` walks one room timeline batch and yields either a
HumanMessage per plain-text message from the configured human, or a single
ExitCommand after which the batch is abandoned.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from matrix_human_bot.errors import MalformedResponseError
from matrix_human_bot.matrix.event_dedupe import EventDedupeWindow

logger = logging.getLogger("matrix_human_bot.filter")

MESSAGE_EVENT_TYPE = "m.room.message"
TEXT_MSGTYPE = "m.text"
EXIT_COMMAND = "exit"


@dataclass(frozen=True)
class HumanMessage:
    body: str
    sender: str
    event_id: str


@dataclass(frozen=True)
class ExitCommand:
    sender: str
    event_id: str


ActionableEvent = Union[HumanMessage, ExitCommand]


def iter_actionable_events(
    events: Iterable[Mapping[str, Any]],
    dedupe: EventDedupeWindow,
    *,
    bot_user_id: str,
    human_user_id: str,
) -> Iterator[ActionableEvent]:
    for event in events:
        if not isinstance(event, Mapping):
            continue

        event_id = event.get("event_id")
        if not isinstance(event_id, str) or not dedupe.check_and_add(event_id):
            continue

        if event.get("type") != MESSAGE_EVENT_TYPE:
            continue

        content = event.get("content")
        if not isinstance(content, Mapping) or content.get("msgtype") != TEXT_MSGTYPE:
            continue

        sender = event.get("sender")
        body = content.get("body")
        if not isinstance(sender, str) or not sender:
            continue
        if not isinstance(body, str) or not body:
            continue

        if sender == bot_user_id:
            continue
        if sender != human_user_id:
            logger.debug("Ignoring message from other sender", extra={"event_id": event_id, "sender": sender})
            continue

        if body.lower() == EXIT_COMMAND:
            yield ExitCommand(sender=sender, event_id=event_id)
            return

        yield HumanMessage(body=body, sender=sender, event_id=event_id)


def extract_next_batch(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the sync `next_batch` token when present"""
    token = payload.get("next_batch")
    if isinstance(token, str) and token:
        return token
    return None


def _rooms_section(payload: Mapping[str, Any], section: str) -> Mapping[str, Any]:
    rooms = payload.get("rooms")
    if rooms is None:
        return {}
    if not isinstance(rooms, Mapping):
        raise MalformedResponseError("sync 'rooms' is not an object")

    value = rooms.get(section)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedResponseError(f"sync 'rooms.{section}' is not an object")
    return value


def extract_invited_room_ids(payload: Mapping[str, Any]) -> List[str]:
    return list(_rooms_section(payload, "invite").keys())


def extract_room_timeline_events(payload: Mapping[str, Any], room_id: str) -> List[Dict[str, Any]]:
    """Timeline events for one joined room; an absent room has no events"""
    room = _rooms_section(payload, "join").get(room_id)
    if room is None:
        return []
    if not isinstance(room, Mapping):
        raise MalformedResponseError(f"sync entry for {room_id} is not an object")

    timeline = room.get("timeline")
    if timeline is None:
        return []
    if not isinstance(timeline, Mapping):
        raise MalformedResponseError(f"timeline for {room_id} is not an object")

    events = timeline.get("events")
    if events is None:
        return []
    if not isinstance(events, list):
        raise MalformedResponseError(f"timeline events for {room_id} is not a list")
    return events
