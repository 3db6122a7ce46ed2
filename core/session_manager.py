"""
Session Manager: the full lifecycle of a game session.

Responsibilities:
1. Create sessions (display metadata, lives, optional scheduled start)
2. Lock the roster ahead of a scheduled start
3. Start the game (0 / 1 / many active participants)
4. Close a session
5. Session queries

Round progress is not handled here, see RoundManager.
"""
from datetime import datetime, timedelta
from sqlalchemy.orm import Session
from uuid import UUID
from typing import List, Optional
import logging

from models import (
    EventType,
    GameSession,
    PRE_GAME_STATUSES,
    SessionStatus,
    TERMINAL_STATUSES,
)
from core.exceptions import DropOneException, InvalidTransition, SessionNotFound
from core.locks import with_session_lock
from core.mode_controller import ModeController, ModeDecision
from core.registry import ParticipantRegistry
from core.round_manager import RoundManager
from core.state_machine import SessionStateMachine
from core.utils import utcnow
from database import get_settings, transactional
from services.event_service import record_event

logger = logging.getLogger(__name__)


class SessionManager:
    """Game session lifecycle manager"""

    @staticmethod
    @transactional
    def create_session(
        db: Session,
        name: str,
        initial_lives: Optional[int] = None,
        venue: Optional[str] = None,
        prize: Optional[str] = None,
        scheduled_start_at: Optional[datetime] = None
    ) -> GameSession:
        """
        Create a session in the waiting status.

        Args:
            initial_lives: lives every participant starts with
                           (defaults to settings.default_initial_lives)
            scheduled_start_at: naive UTC start time for start_due_sessions
        """
        lives = initial_lives or get_settings().default_initial_lives
        game_session = GameSession(
            name=name,
            venue=venue,
            prize=prize,
            initial_lives=lives,
            status=SessionStatus.WAITING,
            scheduled_start_at=scheduled_start_at
        )
        db.add(game_session)
        db.flush()

        logger.info(f"Created session {game_session.id} ({name}), {lives} lives")

        record_event(db, game_session, EventType.SESSION_CREATED, {
            "name": name,
            "initial_lives": lives,
            "scheduled_start_at": scheduled_start_at.isoformat() if scheduled_start_at else None,
        })
        return game_session

    @staticmethod
    @transactional
    def lock_roster(db: Session, session_id: UUID) -> GameSession:
        """
        waiting -> starting. Lobby exits are ignored from here on.

        Idempotent for a session that is already starting.
        """
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)
        if game_session.status == SessionStatus.STARTING:
            return game_session

        SessionStateMachine.transition(db, game_session, SessionStatus.STARTING)
        return game_session

    @staticmethod
    @transactional
    def start_game(db: Session, session_id: UUID) -> ModeDecision:
        """
        Start the game with the participants currently active.

        Flow:
        1. Lock the session, it must be waiting or starting
        2. Collect active participants
        3. 0 active  -> completed, no winner
           1 active  -> that participant wins, zero rounds
           2+ active -> lives reset to initial, round 1 opened in the mode
                        matching the count

        Returns:
            ModeDecision (next_round is round 1 when play begins)

        Raises:
            SessionNotFound, InvalidTransition
        """
        # 1. lock and validate
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)
        if game_session.status not in PRE_GAME_STATUSES:
            raise InvalidTransition(
                f"Session {session_id} is {game_session.status.value}, cannot start"
            )

        # 2. who plays
        active = ParticipantRegistry.active_participants(db, session_id)
        logger.info(f"Starting session {session_id} with {len(active)} active participants")

        # 3. everyone starts with full lives
        if len(active) >= 2:
            for participant in active:
                participant.current_lives = participant.initial_lives
            db.flush()

        return ModeController.decide(db, game_session, active, next_round_number=1)

    @staticmethod
    @transactional
    def close_session(db: Session, session_id: UUID) -> GameSession:
        """
        Close a session from any non-terminal status.

        An open round is stamped as ended; it keeps its phase so the record
        shows where play stopped.

        Raises:
            SessionNotFound, InvalidTransition (already completed / closed)
        """
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)

        round_obj = RoundManager.get_current_round(db, session_id)
        if round_obj is not None and round_obj.ended_at is None:
            round_obj.ended_at = utcnow()

        SessionStateMachine.transition(db, game_session, SessionStatus.CLOSED)
        logger.info(f"Session {session_id} closed")
        return game_session

    @staticmethod
    def start_due_sessions(db: Session, now: Optional[datetime] = None) -> List[dict]:
        """
        Scheduler entry point for scheduled starts.

        - scheduled start reached      -> start_game
        - inside the roster-lock window -> lock_roster

        Each session runs in its own transaction; a failure is logged and
        reported without affecting the others.
        """
        now = now or utcnow()
        window = timedelta(seconds=get_settings().roster_lock_seconds)

        candidates = [
            (s.id, s.status, s.scheduled_start_at)
            for s in db.query(GameSession).filter(
                GameSession.status.in_(PRE_GAME_STATUSES),
                GameSession.scheduled_start_at.isnot(None)
            ).all()
        ]

        results = []
        for session_id, status, scheduled_start_at in candidates:
            try:
                if now >= scheduled_start_at:
                    decision = SessionManager.start_game(db, session_id)
                    results.append({
                        "session_id": str(session_id),
                        "action": "started",
                        "completed": decision.completed,
                        "winner_id": decision.winner_id,
                    })
                elif status == SessionStatus.WAITING and now >= scheduled_start_at - window:
                    SessionManager.lock_roster(db, session_id)
                    results.append({"session_id": str(session_id), "action": "roster_locked"})
            except DropOneException as e:
                logger.warning(f"Scheduled start failed for session {session_id}: {e}")
                results.append({
                    "session_id": str(session_id),
                    "action": "failed",
                    "error": e.kind,
                    "detail": str(e),
                })
        return results

    @staticmethod
    def get_session_by_id(db: Session, session_id: UUID) -> GameSession:
        """
        Raises:
            SessionNotFound
        """
        game_session = db.query(GameSession).filter(GameSession.id == session_id).first()
        if not game_session:
            raise SessionNotFound(session_id)
        return game_session

    @staticmethod
    def get_active_session(db: Session) -> Optional[GameSession]:
        """Most recently created session that has not ended."""
        return db.query(GameSession).filter(
            GameSession.status.notin_(TERMINAL_STATUSES)
        ).order_by(GameSession.created_at.desc()).first()

    @staticmethod
    def list_sessions(db: Session, skip: int = 0, limit: int = 50) -> List[GameSession]:
        return db.query(GameSession).order_by(
            GameSession.created_at.desc()
        ).offset(skip).limit(limit).all()
