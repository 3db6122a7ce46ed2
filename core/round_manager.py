"""
Round Manager: drives the current round of a session through its phases.

Entry points are short, independent calls (submission, tick, skip, resolve).
Each one:
1. locks the session row (the per-session serialization scope)
2. applies its own change
3. calls advance(), which applies every transition whose condition now holds

There is no special "last player triggers the result" path: any caller may
try to advance and the phase check under the lock makes a second, racing
attempt a no-op.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from models import (
    Choice,
    EventType,
    GameSession,
    PLAYING_STATUSES,
    Round,
    RoundPhase,
)
from core.exceptions import (
    DropOneException,
    InvalidChoice,
    ParticipantNotFound,
    RoundNotFound,
    SessionNotFound,
    WrongPhase,
)
from core.locks import with_participant_lock, with_round_lock, with_session_lock
from core.mode_controller import ModeController
from core.registry import ParticipantRegistry
from core.state_machine import RoundStateMachine, ROUND_TRANSITIONS
from core.utils import utcnow
from database import transactional
from services import ledger_service
from services.event_service import record_event
from services.resolution_service import RoundResult, resolve_round, stored_result

logger = logging.getLogger(__name__)

SUBMISSION_PHASES = (RoundPhase.SELECT_TWO, RoundPhase.EXCLUDE_ONE)


@dataclass
class TickResult:
    session_id: str
    session_status: str
    round_id: Optional[str] = None
    round_number: Optional[int] = None
    phase: Optional[str] = None
    time_left: Optional[int] = None
    transitions: List[str] = field(default_factory=list)
    current_round_number: int = 0
    winner_id: Optional[str] = None


class RoundManager:
    """Round lifecycle manager"""

    # ============ Queries ============

    @staticmethod
    def get_round(db: Session, round_id: UUID) -> Round:
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    @staticmethod
    def get_round_by_number(db: Session, session_id: UUID, round_number: int) -> Optional[Round]:
        return db.query(Round).filter(
            Round.session_id == session_id,
            Round.round_number == round_number
        ).first()

    @staticmethod
    def get_current_round(db: Session, session_id: UUID) -> Optional[Round]:
        """Latest round of the session, or None before the first one."""
        return db.query(Round).filter(
            Round.session_id == session_id
        ).order_by(Round.round_number.desc()).first()

    # ============ Submissions ============

    @staticmethod
    @transactional
    def submit_selection(db: Session, round_id: UUID, participant_id: UUID, gestures) -> Tuple[Choice, List[RoundPhase]]:
        """
        Record a two-gesture selection, then try to advance the round.

        Returns:
            (choice, transitions applied by this call)

        Raises:
            RoundNotFound, ParticipantNotFound, WrongPhase, NotLiving, InvalidChoice
        """
        round_obj, game_session = RoundManager._lock_round(db, round_id)
        RoundManager._ensure_playing(game_session)
        participant = RoundManager._lock_participant(db, participant_id)

        choice = ledger_service.record_selection(db, round_obj, participant, gestures)
        participant.last_active_at = utcnow()

        logger.info(
            f"Selection from {participant_id} in round {round_obj.round_number} "
            f"(session={game_session.id}): {choice.selected_gestures}"
        )
        record_event(db, game_session, EventType.CHOICE_RECORDED, {
            "round_id": str(round_obj.id),
            "participant_id": str(participant_id),
            "phase": RoundPhase.SELECT_TWO.value,
        }, round_id=round_obj.id)

        transitions = RoundManager.advance(db, game_session, round_obj)
        return choice, transitions

    @staticmethod
    @transactional
    def submit_final(
        db: Session,
        round_id: UUID,
        participant_id: UUID,
        kept=None,
        dropped=None
    ) -> Tuple[Choice, List[RoundPhase]]:
        """
        Record the gesture a participant keeps (or, equivalently, the one
        they drop), then try to advance the round.

        Exactly one of kept / dropped must be given.

        Raises:
            RoundNotFound, ParticipantNotFound, WrongPhase, NotLiving, InvalidChoice
        """
        if (kept is None) == (dropped is None):
            raise InvalidChoice("Give exactly one of kept or dropped")

        round_obj, game_session = RoundManager._lock_round(db, round_id)
        RoundManager._ensure_playing(game_session)
        participant = RoundManager._lock_participant(db, participant_id)

        if kept is None:
            if round_obj.phase != RoundPhase.EXCLUDE_ONE:
                raise WrongPhase(
                    f"Final gestures are only accepted during excludeOne (round is {round_obj.phase.value})"
                )
            kept = ledger_service.kept_from_dropped(db, round_obj, participant, dropped)

        choice = ledger_service.record_final(db, round_obj, participant, kept)
        participant.last_active_at = utcnow()

        logger.info(
            f"Final from {participant_id} in round {round_obj.round_number} "
            f"(session={game_session.id})"
        )
        record_event(db, game_session, EventType.CHOICE_RECORDED, {
            "round_id": str(round_obj.id),
            "participant_id": str(participant_id),
            "phase": RoundPhase.EXCLUDE_ONE.value,
        }, round_id=round_obj.id)

        transitions = RoundManager.advance(db, game_session, round_obj)
        return choice, transitions

    # ============ Timer ============

    @staticmethod
    @transactional
    def tick(db: Session, session_id: UUID, elapsed: int = 1) -> TickResult:
        """
        One scheduler tick for a session.

        Decrements the current round's timer by `elapsed` seconds (0 only
        re-checks the transition conditions) and applies due transitions.
        A session that is not in play, or has no open round, is left alone.

        Raises:
            SessionNotFound
        """
        game_session = with_session_lock(session_id, db).first()
        if not game_session:
            raise SessionNotFound(session_id)

        if game_session.status not in PLAYING_STATUSES:
            return RoundManager._report(game_session, None, [])

        round_obj = RoundManager.get_current_round(db, session_id)
        if round_obj is None or round_obj.phase == RoundPhase.COMPLETED:
            return RoundManager._report(game_session, round_obj, [])

        round_obj = with_round_lock(round_obj.id, db).first()
        round_obj.time_left = max(0, round_obj.time_left - max(0, elapsed))
        db.flush()

        transitions = RoundManager.advance(db, game_session, round_obj)
        return RoundManager._report(game_session, round_obj, transitions)

    @staticmethod
    def tick_all(db: Session, elapsed: int = 1) -> List[dict]:
        """
        Tick every session in play, each in its own transaction.

        A failing session is logged and reported; it does not stop the others.
        """
        session_ids = [
            s.id for s in db.query(GameSession).filter(GameSession.status.in_(PLAYING_STATUSES)).all()
        ]

        results = []
        for session_id in session_ids:
            try:
                result = RoundManager.tick(db, session_id, elapsed)
                results.append({"ok": True, **result.__dict__})
            except DropOneException as e:
                logger.warning(f"Tick failed for session {session_id}: {e}")
                results.append({"ok": False, "session_id": str(session_id), "error": e.kind, "detail": str(e)})
        return results

    @staticmethod
    @transactional
    def expire_phase(db: Session, round_id: UUID) -> TickResult:
        """
        Host skip: treat the current phase's timer as expired right now.

        Raises:
            RoundNotFound, WrongPhase (round already completed or session not in play)
        """
        round_obj, game_session = RoundManager._lock_round(db, round_id)
        RoundManager._ensure_playing(game_session)
        if round_obj.phase == RoundPhase.COMPLETED:
            raise WrongPhase(f"Round {round_obj.round_number} is already completed")

        logger.info(f"Skipping {round_obj.phase.value} of round {round_obj.round_number} (session={game_session.id})")
        round_obj.time_left = 0
        db.flush()

        transitions = RoundManager.advance(db, game_session, round_obj)
        return RoundManager._report(game_session, round_obj, transitions)

    # ============ Resolution ============

    @staticmethod
    @transactional
    def resolve(db: Session, round_id: UUID) -> RoundResult:
        """
        Resolve a round now (host / recovery path).

        - already resolved: returns the stored result, no life changes
        - excludeOne: resolves and moves the round to revealing
        - any earlier phase: WrongPhase

        Raises:
            RoundNotFound, WrongPhase
        """
        round_obj, game_session = RoundManager._lock_round(db, round_id)

        if round_obj.resolved:
            logger.info(f"Round {round_id} already resolved, returning stored result")
            return stored_result(round_obj)

        RoundManager._ensure_playing(game_session)
        if round_obj.phase != RoundPhase.EXCLUDE_ONE:
            raise WrongPhase(
                f"Round can only be resolved from excludeOne (round is {round_obj.phase.value})"
            )

        result = resolve_round(db, round_obj)
        RoundStateMachine.transition(db, round_obj, RoundPhase.REVEALING)
        return result

    # ============ State machine driver ============

    @staticmethod
    def advance(db: Session, game_session: GameSession, round_obj: Round) -> List[RoundPhase]:
        """
        Apply every transition whose condition holds, in order.

        - waiting / revealing leave only on timer zero
        - selectTwo / excludeOne leave on timer zero or when nobody is pending
        - entering excludeOne locks in one-gesture selections as final
        - entering revealing resolves the round in the same transaction
        - reaching completed hands over to the ModeController

        Caller holds the session lock and owns the transaction.

        Returns:
            the phases entered, in order (empty when nothing was due)
        """
        transitions: List[RoundPhase] = []
        while game_session.status in PLAYING_STATUSES:
            target = RoundManager._due_transition(db, round_obj)
            if target is None:
                break

            if target == RoundPhase.REVEALING:
                resolve_round(db, round_obj)
            RoundStateMachine.transition(db, round_obj, target)
            transitions.append(target)

            if target == RoundPhase.EXCLUDE_ONE:
                ledger_service.finalize_single_selections(db, round_obj.id)

            if target == RoundPhase.COMPLETED:
                ModeController.after_round_completed(db, game_session, round_obj)
                break
        return transitions

    @staticmethod
    def _due_transition(db: Session, round_obj: Round) -> Optional[RoundPhase]:
        phase = round_obj.phase
        if phase == RoundPhase.COMPLETED:
            return None

        target = next(iter(ROUND_TRANSITIONS[phase]))
        if round_obj.time_left <= 0:
            return target

        if phase in SUBMISSION_PHASES:
            # consistent snapshot: living set at this instant, under the lock
            living_ids = [p.id for p in ParticipantRegistry.living_participants(db, round_obj.session_id)]
            if ledger_service.all_submitted(db, round_obj.id, phase, living_ids):
                return target
        return None

    # ============ Helpers ============

    @staticmethod
    def _lock_round(db: Session, round_id: UUID) -> Tuple[Round, GameSession]:
        round_obj = RoundManager.get_round(db, round_id)
        game_session = with_session_lock(round_obj.session_id, db).first()
        round_obj = with_round_lock(round_id, db).first()
        return round_obj, game_session

    @staticmethod
    def _lock_participant(db: Session, participant_id: UUID):
        participant = with_participant_lock(participant_id, db).first()
        if not participant:
            raise ParticipantNotFound(participant_id)
        return participant

    @staticmethod
    def _ensure_playing(game_session: GameSession) -> None:
        if game_session.status not in PLAYING_STATUSES:
            raise WrongPhase(f"Session {game_session.id} is {game_session.status.value}, not in play")

    @staticmethod
    def _report(game_session: GameSession, round_obj: Optional[Round], transitions: List[RoundPhase]) -> TickResult:
        return TickResult(
            session_id=str(game_session.id),
            session_status=game_session.status.value,
            round_id=str(round_obj.id) if round_obj else None,
            round_number=round_obj.round_number if round_obj else None,
            phase=round_obj.phase.value if round_obj else None,
            time_left=round_obj.time_left if round_obj else None,
            transitions=[t.value for t in transitions],
            current_round_number=game_session.current_round_number,
            winner_id=str(game_session.winner_id) if game_session.winner_id else None
        )
