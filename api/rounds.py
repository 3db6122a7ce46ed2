"""
Round API Endpoints (short polling)

Key points:
1. Submissions are upserts: resubmitting before the deadline overwrites
2. Every submission also tries to advance the round; there is no special
   "last player triggers the result" path
3. Business logic lives in RoundManager; clients follow progress through
   /state and /events
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from database import get_db
from models import Round
from schemas import (
    ChoiceView,
    FinalSubmit,
    RoundResponse,
    RoundResultResponse,
    SelectionSubmit,
    SubmissionResponse,
    TickResponse,
)
from core.exceptions import DropOneException
from core.round_manager import RoundManager
from core.session_manager import SessionManager
from services import ledger_service
from services.mode_service import public_choice_view

router = APIRouter(prefix="/api/sessions", tags=["rounds"])
logger = logging.getLogger(__name__)


def _round_or_404(db: Session, session_id: UUID, round_number: int) -> Round:
    round_obj = RoundManager.get_round_by_number(db, session_id, round_number)
    if not round_obj:
        raise HTTPException(status_code=404, detail="Round not found")
    return round_obj


@router.get("/{session_id}/rounds", response_model=List[RoundResponse])
def list_rounds(session_id: UUID, db: Session = Depends(get_db)):
    game_session = SessionManager.get_session_by_id(db, session_id)
    return game_session.rounds


@router.get("/{session_id}/rounds/current", response_model=RoundResponse)
def get_current_round(session_id: UUID, db: Session = Depends(get_db)):
    """
    Current round: number, mode, phase and remaining time.
    """
    SessionManager.get_session_by_id(db, session_id)
    current_round = RoundManager.get_current_round(db, session_id)
    if not current_round:
        raise HTTPException(status_code=404, detail="No active round")
    return current_round


@router.get("/{session_id}/rounds/{round_number}", response_model=RoundResponse)
def get_round(session_id: UUID, round_number: int, db: Session = Depends(get_db)):
    return _round_or_404(db, session_id, round_number)


@router.get("/{session_id}/rounds/{round_number}/choices", response_model=List[ChoiceView])
def get_round_choices(
    session_id: UUID,
    round_number: int,
    participant_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db)
):
    """Choices as the viewer is allowed to see them in the round's current phase."""
    round_obj = _round_or_404(db, session_id, round_number)
    return [
        public_choice_view(round_obj, choice, viewer_id=participant_id)
        for choice in ledger_service.get_choices(db, round_obj.id)
    ]


@router.post("/{session_id}/rounds/{round_number}/selection", response_model=SubmissionResponse)
def submit_selection(
    session_id: UUID,
    round_number: int,
    data: SelectionSubmit,
    db: Session = Depends(get_db)
):
    """
    Submit the two gestures (selectTwo).

    Flow:
    1. Find the round
    2. Record the selection (upsert)
    3. Advance the round if everyone has now selected
    """
    try:
        round_obj = _round_or_404(db, session_id, round_number)

        choice, transitions = RoundManager.submit_selection(
            db, round_obj.id, data.participant_id, data.gestures
        )
        round_obj = RoundManager.get_round(db, round_obj.id)

        return SubmissionResponse(
            choice=public_choice_view(round_obj, choice, viewer_id=data.participant_id),
            transitions=[t.value for t in transitions],
            phase=round_obj.phase
        )

    except (HTTPException, DropOneException):
        raise
    except Exception as e:
        logger.error(f"Failed to submit selection: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/rounds/{round_number}/final", response_model=SubmissionResponse)
def submit_final(
    session_id: UUID,
    round_number: int,
    data: FinalSubmit,
    db: Session = Depends(get_db)
):
    """
    Keep one of the two gestures (excludeOne).

    Body carries either `kept` or `dropped`; the dropped form is translated
    to the kept gesture.
    """
    try:
        round_obj = _round_or_404(db, session_id, round_number)

        choice, transitions = RoundManager.submit_final(
            db, round_obj.id, data.participant_id, kept=data.kept, dropped=data.dropped
        )
        round_obj = RoundManager.get_round(db, round_obj.id)

        return SubmissionResponse(
            choice=public_choice_view(round_obj, choice, viewer_id=data.participant_id),
            transitions=[t.value for t in transitions],
            phase=round_obj.phase
        )

    except (HTTPException, DropOneException):
        raise
    except Exception as e:
        logger.error(f"Failed to submit final gesture: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/rounds/{round_number}/resolve", response_model=RoundResultResponse)
def resolve_round(session_id: UUID, round_number: int, db: Session = Depends(get_db)):
    """
    Resolve now (host endpoint).

    Idempotent: a resolved round returns its stored result and nobody loses
    a life twice.
    """
    round_obj = _round_or_404(db, session_id, round_number)
    result = RoundManager.resolve(db, round_obj.id)

    logger.info(f"Round {round_number} resolve requested for session {session_id}")
    return RoundResultResponse(
        round_id=result.round_id,
        tally=result.tally.to_dict(),
        outcome=result.outcome,
        losing_gestures=result.losing_gestures,
        deltas=[d.to_dict() for d in result.deltas],
        already_resolved=result.already_resolved
    )


@router.post("/{session_id}/rounds/{round_number}/skip", response_model=TickResponse)
def skip_phase(session_id: UUID, round_number: int, db: Session = Depends(get_db)):
    """
    Skip the current phase (host endpoint).

    Use cases:
    - a participant disconnected and nobody wants to wait out the timer
    - the host wants to move the show along

    Effect: the phase timer is treated as expired, so the round moves on
    exactly as it would on timeout (missing finals pay the timeout penalty).
    """
    round_obj = _round_or_404(db, session_id, round_number)
    result = RoundManager.expire_phase(db, round_obj.id)

    logger.info(f"Round {round_number} skipped to {result.phase} for session {session_id}")
    return result.__dict__
