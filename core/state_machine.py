"""
State machines

Every session status change and every round phase change goes through here.
The transition tables are the single source of truth; call sites never
assign `status` / `phase` directly.

Round:
    waiting -> selectTwo -> excludeOne -> revealing -> completed

Session:
    waiting -> starting -> in_progress -> finals -> completed
    (starting is optional, in_progress may be skipped when the game starts
    with few players, and any non-terminal status may be closed)
"""
import logging

from sqlalchemy.orm import Session

from models import (
    EventType,
    GameSession,
    Round,
    RoundPhase,
    SessionStatus,
)
from core.exceptions import InvalidTransition
from core.utils import utcnow
from database import get_settings
from services.event_service import record_event

logger = logging.getLogger(__name__)


ROUND_TRANSITIONS = {
    RoundPhase.WAITING: {RoundPhase.SELECT_TWO},
    RoundPhase.SELECT_TWO: {RoundPhase.EXCLUDE_ONE},
    RoundPhase.EXCLUDE_ONE: {RoundPhase.REVEALING},
    RoundPhase.REVEALING: {RoundPhase.COMPLETED},
    RoundPhase.COMPLETED: set(),
}

SESSION_TRANSITIONS = {
    SessionStatus.WAITING: {
        SessionStatus.STARTING,
        SessionStatus.IN_PROGRESS,
        SessionStatus.FINALS,
        SessionStatus.COMPLETED,
        SessionStatus.CLOSED,
    },
    SessionStatus.STARTING: {
        SessionStatus.IN_PROGRESS,
        SessionStatus.FINALS,
        SessionStatus.COMPLETED,
        SessionStatus.CLOSED,
    },
    SessionStatus.IN_PROGRESS: {
        SessionStatus.FINALS,
        SessionStatus.COMPLETED,
        SessionStatus.CLOSED,
    },
    SessionStatus.FINALS: {
        SessionStatus.COMPLETED,
        SessionStatus.CLOSED,
    },
    SessionStatus.COMPLETED: set(),
    SessionStatus.CLOSED: set(),
}


def phase_duration(phase: RoundPhase) -> int:
    """Timer value a phase starts with."""
    settings = get_settings()
    return {
        RoundPhase.WAITING: settings.waiting_seconds,
        RoundPhase.SELECT_TWO: settings.select_two_seconds,
        RoundPhase.EXCLUDE_ONE: settings.exclude_one_seconds,
        RoundPhase.REVEALING: settings.revealing_seconds,
        RoundPhase.COMPLETED: 0,
    }[phase]


class RoundStateMachine:
    """Phase transitions of a single round"""

    @staticmethod
    def can_transition(current: RoundPhase, target: RoundPhase) -> bool:
        return target in ROUND_TRANSITIONS[current]

    @staticmethod
    def transition(db: Session, round_obj: Round, target: RoundPhase) -> Round:
        """
        Move a (locked) round to its next phase.

        Effects:
            - phase set, timer reset to the phase duration
            - phase_started_at stamped, ended_at stamped on completion
            - phaseChanged event recorded

        Raises:
            InvalidTransition: target is not the next phase
        """
        current = round_obj.phase
        if not RoundStateMachine.can_transition(current, target):
            raise InvalidTransition(
                f"Round {round_obj.id}: cannot go from {current.value} to {target.value}"
            )

        now = utcnow()
        round_obj.phase = target
        round_obj.time_left = phase_duration(target)
        round_obj.phase_started_at = now
        if target == RoundPhase.COMPLETED:
            round_obj.ended_at = now
        db.flush()

        logger.info(
            f"Round {round_obj.round_number} (session={round_obj.session_id}): "
            f"{current.value} -> {target.value}"
        )

        record_event(
            db,
            round_obj.session,
            EventType.PHASE_CHANGED,
            {
                "round_id": str(round_obj.id),
                "round_number": round_obj.round_number,
                "phase": target.value,
                "time_left": round_obj.time_left,
            },
            round_id=round_obj.id
        )
        return round_obj


class SessionStateMachine:
    """Status transitions of a game session"""

    @staticmethod
    def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
        return target in SESSION_TRANSITIONS[current]

    @staticmethod
    def transition(db: Session, game_session: GameSession, target: SessionStatus) -> GameSession:
        """
        Move a (locked) session to a new status.

        Effects:
            - started_at stamped when play begins
            - ended_at stamped on completed / closed
            - sessionStatusChanged event recorded

        Raises:
            InvalidTransition: not allowed by SESSION_TRANSITIONS
        """
        current = game_session.status
        if not SessionStateMachine.can_transition(current, target):
            raise InvalidTransition(
                f"Session {game_session.id}: cannot go from {current.value} to {target.value}"
            )

        now = utcnow()
        game_session.status = target
        if target in (SessionStatus.IN_PROGRESS, SessionStatus.FINALS) and game_session.started_at is None:
            game_session.started_at = now
        if target in (SessionStatus.COMPLETED, SessionStatus.CLOSED):
            game_session.ended_at = now
        db.flush()

        logger.info(f"Session {game_session.id}: {current.value} -> {target.value}")

        record_event(
            db,
            game_session,
            EventType.SESSION_STATUS_CHANGED,
            {"from": current.value, "to": target.value}
        )
        return game_session
