"""
Session API Endpoints

Responsibilities:
1. Session admin (create / list / active / close)
2. Game start
3. Consolidated state for short-polling clients
4. Event feed
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
import logging

from database import get_db
from schemas import (
    EventFeedResponse,
    GameStateResponse,
    ParticipantResponse,
    RoundResponse,
    SessionCreate,
    SessionResponse,
    StartGameResponse,
)
from core.exceptions import DropOneException
from core.registry import ParticipantRegistry, is_roster_locked
from core.round_manager import RoundManager
from core.session_manager import SessionManager
from core.utils import to_naive_utc
from services import ledger_service
from services.event_service import list_events, serialize_event
from services.mode_service import public_choice_view

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


@router.post("", response_model=SessionResponse, status_code=201)
def create_session(data: SessionCreate, db: Session = Depends(get_db)):
    """
    Create a session (host endpoint).

    scheduled_start_at is read as UTC; a timezone-aware value is converted.
    """
    return SessionManager.create_session(
        db,
        name=data.name,
        initial_lives=data.initial_lives,
        venue=data.venue,
        prize=data.prize,
        scheduled_start_at=to_naive_utc(data.scheduled_start_at)
    )


@router.get("", response_model=List[SessionResponse])
def list_sessions(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db)
):
    return SessionManager.list_sessions(db, skip=skip, limit=limit)


@router.get("/active", response_model=SessionResponse)
def get_active_session(db: Session = Depends(get_db)):
    """Most recent session that has not ended."""
    game_session = SessionManager.get_active_session(db)
    if not game_session:
        raise HTTPException(status_code=404, detail="No active session")
    return game_session


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(session_id: UUID, db: Session = Depends(get_db)):
    return SessionManager.get_session_by_id(db, session_id)


@router.post("/{session_id}/start", response_model=StartGameResponse)
def start_game(session_id: UUID, db: Session = Depends(get_db)):
    """
    Start the game (host endpoint).

    Outcomes:
    - 0 active participants: session completed, no winner
    - 1 active participant: winner declared, no rounds played
    - 2+: round 1 opened, preliminary or finals by count
    """
    try:
        decision = SessionManager.start_game(db, session_id)
        game_session = SessionManager.get_session_by_id(db, session_id)

        return StartGameResponse(
            session=SessionResponse.model_validate(game_session),
            living_count=decision.living_count,
            completed=decision.completed,
            winner_id=decision.winner_id,
            round=RoundResponse.model_validate(decision.next_round) if decision.next_round else None
        )

    except DropOneException:
        raise
    except Exception as e:
        logger.error(f"Failed to start session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/close", response_model=SessionResponse)
def close_session(session_id: UUID, db: Session = Depends(get_db)):
    return SessionManager.close_session(db, session_id)


@router.get("/{session_id}/state", response_model=GameStateResponse)
def get_game_state(
    session_id: UUID,
    participant_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Everything a client needs to render the current screen.

    Choices are filtered through the mode's visibility rule; the viewer
    (participant_id) always sees their own choice in full.
    """
    game_session = SessionManager.get_session_by_id(db, session_id)
    participants = ParticipantRegistry.list_participants(db, session_id)
    living = [p for p in participants if p.is_living]

    current_round = RoundManager.get_current_round(db, session_id)
    choices = []
    if current_round is not None:
        choices = [
            public_choice_view(current_round, choice, viewer_id=participant_id)
            for choice in ledger_service.get_choices(db, current_round.id)
        ]

    return GameStateResponse(
        session=SessionResponse.model_validate(game_session),
        participants=[ParticipantResponse.model_validate(p) for p in participants],
        living_count=len(living),
        current_round=RoundResponse.model_validate(current_round) if current_round else None,
        choices=choices,
        roster_locked=is_roster_locked(game_session)
    )


@router.get("/{session_id}/events", response_model=EventFeedResponse)
def get_events(
    session_id: UUID,
    after: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Events with id > after, oldest first. Poll with the last id seen."""
    game_session = SessionManager.get_session_by_id(db, session_id)
    events = list_events(db, session_id, after_id=after, limit=limit)
    return EventFeedResponse(
        state_version=game_session.state_version,
        events=[serialize_event(e) for e in events]
    )
