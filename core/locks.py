"""
Concurrency control

Row-level pessimistic locks (SELECT ... FOR UPDATE).

The session row is the serialization scope: every operation that mutates a
session's rounds, choices or participants locks it first, so "all submitted"
checks, phase transitions and resolution never see a half-applied update from
a concurrent request. Participant rows are locked on top of that whenever
lives are changed.

SQLite ignores FOR UPDATE; there the database-wide write lock provides the
ordering.
"""
from sqlalchemy.orm import Session, Query
from uuid import UUID

from models import GameSession, Round, Participant


def with_session_lock(session_id: UUID, db: Session) -> Query:
    """
    Lock one GameSession row.

    Usage:
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)

    Notes:
        - nowait=False waits for the holder instead of failing
        - populate_existing refreshes an instance already in the identity map,
          so the caller works on the locked values, not a stale copy
        - must run inside a transaction (see database.transactional)
        - pending changes are flushed first so populate_existing never
          overwrites them
    """
    db.flush()
    return db.query(GameSession).filter(
        GameSession.id == session_id
    ).with_for_update(nowait=False).populate_existing()


def with_round_lock(round_id: UUID, db: Session) -> Query:
    """
    Lock one Round row.

    Only used after the owning session is already locked, to keep lock order
    session -> round -> participant and avoid deadlocks.
    """
    db.flush()
    return db.query(Round).filter(
        Round.id == round_id
    ).with_for_update(nowait=False).populate_existing()


def with_participant_lock(participant_id: UUID, db: Session) -> Query:
    """
    Lock one Participant row (life deltas, eliminations).
    """
    db.flush()
    return db.query(Participant).filter(
        Participant.id == participant_id
    ).with_for_update(nowait=False).populate_existing()
