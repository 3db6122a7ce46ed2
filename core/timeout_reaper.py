"""
Timeout Reaper: removes participants whose client stopped talking to us.

Driven by the external scheduler (see api/scheduler.py). Activity is any
heartbeat or choice submission; both stamp last_active_at.

    session in play      -> eliminated (reason: inactivity, lives untouched),
                            then the current round is re-checked so nobody
                            keeps waiting for a departed player
    session not started  -> back to enrolled (left the lobby)
"""
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    EliminationReason,
    EventType,
    GameSession,
    Participant,
    ParticipantStatus,
    PLAYING_STATUSES,
    PRE_GAME_STATUSES,
    RoundPhase,
)
from core.exceptions import DropOneException
from core.locks import with_round_lock, with_session_lock
from core.registry import ParticipantRegistry
from core.round_manager import RoundManager
from core.utils import utcnow
from database import get_settings, transactional
from services.event_service import record_event

logger = logging.getLogger(__name__)


class TimeoutReaper:
    """Inactivity detection"""

    @staticmethod
    def check_and_timeout(
        db: Session,
        threshold_seconds: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> List[dict]:
        """
        Reap every active participant idle for longer than the threshold.

        Each session is handled in its own transaction so one failing session
        does not hold back the rest.

        Args:
            threshold_seconds: defaults to settings.inactivity_timeout_seconds
            now: naive UTC reference time (tests pass a fixed value)

        Returns:
            one dict per reaped participant:
            {participant_id, session_id, nickname, action}
        """
        threshold = threshold_seconds if threshold_seconds is not None else get_settings().inactivity_timeout_seconds
        now = now or utcnow()
        cutoff = now - timedelta(seconds=threshold)

        session_ids = list(dict.fromkeys(
            p.session_id for p in TimeoutReaper._stale_query(db, cutoff).all()
        ))

        reaped: List[dict] = []
        for session_id in session_ids:
            try:
                reaped.extend(TimeoutReaper._reap_session(db, session_id, cutoff))
            except DropOneException as e:
                logger.warning(f"Reaper failed for session {session_id}: {e}")

        if reaped:
            logger.info(f"Reaped {len(reaped)} inactive participants: {[r['nickname'] for r in reaped]}")
        return reaped

    @staticmethod
    @transactional
    def record_activity(db: Session, participant_id: UUID) -> Participant:
        """
        Heartbeat: stamp last_active_at.

        Raises:
            ParticipantNotFound
        """
        participant, _ = ParticipantRegistry.lock_participant(db, participant_id)
        participant.last_active_at = utcnow()
        return participant

    @staticmethod
    @transactional
    def _reap_session(db: Session, session_id: UUID, cutoff: datetime) -> List[dict]:
        game_session = with_session_lock(session_id, db).first()
        if game_session is None:
            return []

        # re-read under the lock: a heartbeat may have landed in between
        stale = TimeoutReaper._stale_query(db, cutoff).filter(
            Participant.session_id == session_id
        ).all()
        if not stale:
            return []

        reaped = []
        if game_session.status in PLAYING_STATUSES:
            for participant in stale:
                ParticipantRegistry.eliminate(db, participant, EliminationReason.INACTIVITY)
                reaped.append(TimeoutReaper._reaped(participant, "eliminated"))
            TimeoutReaper._recheck_round(db, game_session)

        elif game_session.status in PRE_GAME_STATUSES:
            for participant in stale:
                participant.status = ParticipantStatus.ENROLLED
                db.flush()
                record_event(db, game_session, EventType.PARTICIPANT_DEACTIVATED, {
                    "participant_id": str(participant.id),
                    "reason": EliminationReason.INACTIVITY.value,
                })
                reaped.append(TimeoutReaper._reaped(participant, "deactivated"))

        return reaped

    @staticmethod
    def _recheck_round(db: Session, game_session: GameSession) -> None:
        round_obj = RoundManager.get_current_round(db, game_session.id)
        if round_obj is None or round_obj.phase == RoundPhase.COMPLETED:
            return
        round_obj = with_round_lock(round_obj.id, db).first()
        RoundManager.advance(db, game_session, round_obj)

    @staticmethod
    def _stale_query(db: Session, cutoff: datetime):
        return db.query(Participant).join(
            GameSession, Participant.session_id == GameSession.id
        ).filter(
            Participant.status == ParticipantStatus.ACTIVE,
            GameSession.status.in_(PLAYING_STATUSES + PRE_GAME_STATUSES),
            func.coalesce(Participant.last_active_at, Participant.joined_at) < cutoff
        )

    @staticmethod
    def _reaped(participant: Participant, action: str) -> dict:
        return {
            "participant_id": str(participant.id),
            "session_id": str(participant.session_id),
            "nickname": participant.nickname,
            "action": action,
        }
