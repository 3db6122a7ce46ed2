"""
Event service: the notification channel.

Events are written to EventLog inside the caller's transaction (so they are
durable exactly when the state change is) and queued on the db session.
`database.transactional` hands the queue to subscribers after commit and
drops it on rollback, which gives write-then-notify ordering.

Delivery to subscribers is fire-and-forget: a failing subscriber is logged
and never affects game state. Clients that missed a push can always catch up
through `list_events` (short polling on `state_version`).
"""
import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import EventLog, EventType, GameSession
from core.utils import format_timestamp

logger = logging.getLogger(__name__)

PENDING_KEY = "pending_events"

Subscriber = Callable[[Dict[str, Any]], None]
_subscribers: List[Subscriber] = []


def subscribe(callback: Subscriber) -> None:
    if callback not in _subscribers:
        _subscribers.append(callback)


def unsubscribe(callback: Subscriber) -> None:
    if callback in _subscribers:
        _subscribers.remove(callback)


def record_event(
    db: Session,
    game_session: GameSession,
    event_type: EventType,
    data: Dict[str, Any],
    round_id: Optional[UUID] = None
) -> EventLog:
    """
    Persist an event and queue it for post-commit delivery.

    Also bumps game_session.state_version so polling clients can tell
    something changed without diffing state.
    """
    game_session.state_version = (game_session.state_version or 0) + 1

    event = EventLog(
        session_id=game_session.id,
        round_id=round_id,
        event_type=event_type.value,
        data=data
    )
    db.add(event)
    db.flush()

    db.info.setdefault(PENDING_KEY, []).append(serialize_event(event))
    logger.debug("Queued %s for session %s", event_type.value, game_session.id)
    return event


def dispatch_pending_events(db: Session) -> int:
    """Deliver queued events to subscribers. Returns how many were dispatched."""
    events = db.info.pop(PENDING_KEY, [])
    for event in events:
        logger.info("Event %s (session=%s)", event["type"], event["session_id"])
        for callback in list(_subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Subscriber failed for event {event['id']}: {e}", exc_info=True)
    return len(events)


def discard_pending_events(db: Session) -> None:
    dropped = db.info.pop(PENDING_KEY, [])
    if dropped:
        logger.debug("Discarded %d queued events after rollback", len(dropped))


def list_events(db: Session, session_id: UUID, after_id: int = 0, limit: int = 100) -> List[EventLog]:
    """Events of a session with id > after_id, oldest first."""
    return (
        db.query(EventLog)
        .filter(EventLog.session_id == session_id, EventLog.id > after_id)
        .order_by(EventLog.id)
        .limit(limit)
        .all()
    )


def serialize_event(event: EventLog) -> Dict[str, Any]:
    return {
        "id": event.id,
        "type": event.event_type,
        "session_id": str(event.session_id),
        "round_id": str(event.round_id) if event.round_id else None,
        "data": event.data,
        "created_at": format_timestamp(event.created_at),
    }
