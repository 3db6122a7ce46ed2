"""
Mode / termination controller

Decides, from the living-participant count, what happens next:

    N == 0  -> session completed, no winner
    N == 1  -> that participant wins, session completed
    N <= 4  -> finals round (session moves to finals)
    N >  4  -> preliminary round

Used at game start (with the active-participant count) and after every
completed round. Also owns round creation so both paths open rounds the same
way.
"""
from dataclasses import dataclass
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models import (
    EventType,
    GameMode,
    GameSession,
    Participant,
    Round,
    RoundPhase,
    SessionStatus,
)
from core.registry import ParticipantRegistry
from core.state_machine import RoundStateMachine, SessionStateMachine, phase_duration
from core.utils import utcnow
from services.event_service import record_event
from services.mode_service import mode_for_count

logger = logging.getLogger(__name__)


@dataclass
class ModeDecision:
    living_count: int
    winner_id: Optional[str] = None
    completed: bool = False
    next_round: Optional[Round] = None


class ModeController:
    """Mode switching and end-of-game detection"""

    @staticmethod
    def decide(db: Session, game_session: GameSession, participants: List[Participant],
               next_round_number: int) -> ModeDecision:
        """
        Apply the N-based rule to a locked, playing-or-starting session.

        Args:
            participants: the set that counts as "still playing"
            next_round_number: number for the round to open if play continues
        """
        n = len(participants)

        if n == 0:
            ModeController.complete_session(db, game_session, winner=None)
            return ModeDecision(living_count=0, completed=True)

        if n == 1:
            winner = ParticipantRegistry.declare_winner(db, participants[0])
            ModeController.complete_session(db, game_session, winner=winner)
            return ModeDecision(living_count=1, winner_id=str(winner.id), completed=True)

        mode = mode_for_count(n)
        target = SessionStatus.FINALS if mode == GameMode.FINALS else SessionStatus.IN_PROGRESS
        if game_session.status != target:
            SessionStateMachine.transition(db, game_session, target)

        next_round = ModeController.open_round(db, game_session, next_round_number, mode)
        return ModeDecision(living_count=n, next_round=next_round)

    @staticmethod
    def after_round_completed(db: Session, game_session: GameSession, round_obj: Round) -> ModeDecision:
        """Run once a round reaches completed."""
        living = ParticipantRegistry.living_participants(db, game_session.id)
        logger.info(
            f"Round {round_obj.round_number} completed in session {game_session.id}: "
            f"{len(living)} living"
        )
        return ModeController.decide(db, game_session, living, round_obj.round_number + 1)

    @staticmethod
    def open_round(db: Session, game_session: GameSession, round_number: int, mode: GameMode) -> Round:
        """
        Create a round in the waiting phase and make it current.

        A zero-length waiting phase moves straight on to selectTwo.
        """
        now = utcnow()
        round_obj = Round(
            session=game_session,
            round_number=round_number,
            mode=mode,
            phase=RoundPhase.WAITING,
            time_left=phase_duration(RoundPhase.WAITING),
            started_at=now,
            phase_started_at=now
        )
        db.add(round_obj)
        game_session.current_round_number = round_number
        db.flush()

        logger.info(f"Opened round {round_number} ({mode.value}) for session {game_session.id}")
        record_event(db, game_session, EventType.ROUND_CREATED, {
            "round_id": str(round_obj.id),
            "round_number": round_number,
            "mode": mode.value,
            "phase": round_obj.phase.value,
            "time_left": round_obj.time_left,
        }, round_id=round_obj.id)

        if round_obj.time_left <= 0:
            RoundStateMachine.transition(db, round_obj, RoundPhase.SELECT_TWO)
        return round_obj

    @staticmethod
    def complete_session(db: Session, game_session: GameSession, winner: Optional[Participant]) -> GameSession:
        game_session.winner_id = winner.id if winner else None
        SessionStateMachine.transition(db, game_session, SessionStatus.COMPLETED)

        logger.info(
            f"Session {game_session.id} completed, winner: "
            f"{winner.nickname if winner else 'none'}"
        )
        record_event(db, game_session, EventType.SESSION_COMPLETED, {
            "winner_id": str(winner.id) if winner else None,
            "winner_nickname": winner.nickname if winner else None,
        })
        return game_session
