"""
Participant Registry: identity, lives and membership status.

Responsibilities:
1. Enrollment and lobby entry / exit (enroll, activate, deactivate)
2. Life deltas and the lives == 0 => eliminated invariant
3. The authoritative "who is still playing" view (living_participants)

Every mutating call takes the session lock first (see core.locks), so two
writers on the same session are always serialized.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from models import (
    EliminationReason,
    EventType,
    GameSession,
    Participant,
    ParticipantStatus,
    PLAYING_STATUSES,
    SessionStatus,
    TERMINAL_STATUSES,
)
from core.exceptions import (
    DuplicateIdentity,
    InvalidTransition,
    ParticipantNotFound,
    SessionLocked,
    SessionNotFound,
)
from core.locks import with_participant_lock, with_session_lock
from core.utils import utcnow
from database import get_settings, transactional
from services.event_service import record_event

logger = logging.getLogger(__name__)


@dataclass
class LifeDelta:
    """One participant's life change, as reported in roundResolved"""
    participant_id: str
    lives_lost: int
    lives_remaining: int
    reason: str
    eliminated: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def is_roster_locked(game_session: GameSession, now: Optional[datetime] = None) -> bool:
    """
    True while lobby exits are frozen ahead of the scheduled start.

    Locked when the session is `starting`, or when a scheduled start is
    within roster_lock_seconds.
    """
    if game_session.status == SessionStatus.STARTING:
        return True
    if game_session.status != SessionStatus.WAITING or game_session.scheduled_start_at is None:
        return False
    now = now or utcnow()
    window = timedelta(seconds=get_settings().roster_lock_seconds)
    return now >= game_session.scheduled_start_at - window


class ParticipantRegistry:
    """Participant lifecycle manager"""

    @staticmethod
    @transactional
    def enroll(
        db: Session,
        session_id: UUID,
        identity: str,
        nickname: str,
        initial_lives: Optional[int] = None
    ) -> Participant:
        """
        Enroll an identity in a session (status: enrolled).

        Raises:
            SessionNotFound: unknown session
            SessionLocked: the session has already started or ended
            DuplicateIdentity: the identity is already enrolled here
        """
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)

        if game_session.status not in (SessionStatus.WAITING, SessionStatus.STARTING):
            raise SessionLocked(
                f"Session {session_id} is {game_session.status.value}, enrollment closed"
            )

        existing = db.query(Participant).filter(
            Participant.session_id == session_id,
            Participant.identity == identity
        ).first()
        if existing:
            raise DuplicateIdentity(f"Identity {identity} already enrolled in session {session_id}")

        lives = initial_lives or game_session.initial_lives
        participant = Participant(
            session_id=session_id,
            identity=identity,
            nickname=nickname,
            initial_lives=lives,
            current_lives=lives,
            status=ParticipantStatus.ENROLLED,
            last_active_at=utcnow()
        )
        db.add(participant)
        db.flush()

        logger.info(f"Participant {participant.id} ({nickname}) enrolled in session {session_id}")

        record_event(db, game_session, EventType.PARTICIPANT_ENROLLED, {
            "participant_id": str(participant.id),
            "nickname": nickname,
            "lives": lives,
        })
        return participant

    @staticmethod
    @transactional
    def activate(db: Session, participant_id: UUID) -> Participant:
        """
        Enter the lobby: enrolled -> active.

        Idempotent for an already active participant.

        Raises:
            ParticipantNotFound
            InvalidTransition: session already started/ended, or participant
                               is eliminated / winner
        """
        participant, game_session = ParticipantRegistry.lock_participant(db, participant_id)

        if game_session.status in PLAYING_STATUSES or game_session.status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Cannot activate participant: session is {game_session.status.value}"
            )

        if participant.status == ParticipantStatus.ACTIVE:
            return participant
        if participant.status != ParticipantStatus.ENROLLED:
            raise InvalidTransition(
                f"Cannot activate participant in status {participant.status.value}"
            )

        participant.status = ParticipantStatus.ACTIVE
        participant.last_active_at = utcnow()
        db.flush()

        logger.info(f"Participant {participant_id} activated in session {game_session.id}")
        record_event(db, game_session, EventType.PARTICIPANT_ACTIVATED, {
            "participant_id": str(participant.id),
        })
        return participant

    @staticmethod
    @transactional
    def deactivate(db: Session, participant_id: UUID, now: Optional[datetime] = None) -> Tuple[Participant, bool]:
        """
        Leave the lobby: active -> enrolled.

        Returns:
            (participant, locked). locked=True means the roster-lock window is
            open and nothing changed; this is a success, not an error.

        Raises:
            ParticipantNotFound
            SessionLocked: the session has started or ended
            InvalidTransition: participant is not active
        """
        participant, game_session = ParticipantRegistry.lock_participant(db, participant_id)

        if game_session.status in PLAYING_STATUSES or game_session.status in TERMINAL_STATUSES:
            raise SessionLocked(
                f"Cannot leave: session is {game_session.status.value}"
            )

        if is_roster_locked(game_session, now):
            logger.info(f"Deactivate of {participant_id} ignored, roster locked")
            return participant, True

        if participant.status == ParticipantStatus.ENROLLED:
            return participant, False
        if participant.status != ParticipantStatus.ACTIVE:
            raise InvalidTransition(
                f"Cannot deactivate participant in status {participant.status.value}"
            )

        participant.status = ParticipantStatus.ENROLLED
        db.flush()

        logger.info(f"Participant {participant_id} deactivated in session {game_session.id}")
        record_event(db, game_session, EventType.PARTICIPANT_DEACTIVATED, {
            "participant_id": str(participant.id),
        })
        return participant, False

    @staticmethod
    def apply_life_delta(
        db: Session,
        participant_id: UUID,
        delta: int,
        reason: EliminationReason
    ) -> LifeDelta:
        """
        Change a participant's lives, clamped to [0, initial_lives].

        Reaching 0 eliminates the participant (eliminated_at, reason, event).
        Caller must hold the session lock and own the transaction.
        """
        participant = with_participant_lock(participant_id, db).first()
        if not participant:
            raise ParticipantNotFound(participant_id)

        before = participant.current_lives
        after = max(0, min(participant.initial_lives, before + delta))
        participant.current_lives = after

        eliminated = False
        if after == 0 and participant.status == ParticipantStatus.ACTIVE:
            ParticipantRegistry._mark_eliminated(db, participant, reason)
            eliminated = True
        db.flush()

        logger.info(
            f"Participant {participant_id}: lives {before} -> {after} ({reason.value})"
        )
        return LifeDelta(
            participant_id=str(participant_id),
            lives_lost=max(0, before - after),
            lives_remaining=after,
            reason=reason.value,
            eliminated=eliminated
        )

    @staticmethod
    def eliminate(db: Session, participant: Participant, reason: EliminationReason) -> Participant:
        """
        Force-eliminate regardless of lives (inactivity).

        Caller must hold the session lock and own the transaction.
        """
        participant = with_participant_lock(participant.id, db).first()
        if participant.status != ParticipantStatus.ACTIVE:
            return participant
        ParticipantRegistry._mark_eliminated(db, participant, reason)
        db.flush()
        return participant

    @staticmethod
    def declare_winner(db: Session, participant: Participant) -> Participant:
        participant = with_participant_lock(participant.id, db).first()
        participant.status = ParticipantStatus.WINNER
        db.flush()
        logger.info(f"Participant {participant.id} ({participant.nickname}) is the winner")
        return participant

    @staticmethod
    def living_participants(db: Session, session_id: UUID) -> List[Participant]:
        """Active participants with lives left, in join order."""
        return db.query(Participant).filter(
            Participant.session_id == session_id,
            Participant.status == ParticipantStatus.ACTIVE,
            Participant.current_lives > 0
        ).order_by(Participant.joined_at).all()

    @staticmethod
    def active_participants(db: Session, session_id: UUID) -> List[Participant]:
        return db.query(Participant).filter(
            Participant.session_id == session_id,
            Participant.status == ParticipantStatus.ACTIVE
        ).order_by(Participant.joined_at).all()

    @staticmethod
    def list_participants(db: Session, session_id: UUID) -> List[Participant]:
        return db.query(Participant).filter(
            Participant.session_id == session_id
        ).order_by(Participant.joined_at).all()

    @staticmethod
    def get_participant(db: Session, participant_id: UUID) -> Participant:
        participant = db.query(Participant).filter(Participant.id == participant_id).first()
        if not participant:
            raise ParticipantNotFound(participant_id)
        return participant

    @staticmethod
    def lock_participant(db: Session, participant_id: UUID) -> Tuple[Participant, GameSession]:
        participant = ParticipantRegistry.get_participant(db, participant_id)
        game_session = with_session_lock(participant.session_id, db).first()
        participant = with_participant_lock(participant_id, db).first()
        return participant, game_session

    @staticmethod
    def _mark_eliminated(db: Session, participant: Participant, reason: EliminationReason) -> None:
        participant.status = ParticipantStatus.ELIMINATED
        participant.eliminated_at = utcnow()
        participant.elimination_reason = reason

        logger.info(f"Participant {participant.id} eliminated ({reason.value})")
        record_event(db, participant.session, EventType.PARTICIPANT_ELIMINATED, {
            "participant_id": str(participant.id),
            "reason": reason.value,
            "lives_remaining": participant.current_lives,
        })
