"""
Participant API Endpoints

Responsibilities:
1. Enrollment
2. Lobby entry / exit
3. Heartbeats (keep the reaper away)
4. Participant queries and round history
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
import logging

from database import get_db
from schemas import (
    ActionResponse,
    DeactivateResponse,
    HistoryEntry,
    ParticipantEnroll,
    ParticipantResponse,
)
from core.registry import ParticipantRegistry
from core.session_manager import SessionManager
from core.timeout_reaper import TimeoutReaper
from services.history_service import get_participant_round_history

router = APIRouter(prefix="/api", tags=["participants"])
logger = logging.getLogger(__name__)


@router.post(
    "/sessions/{session_id}/participants",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED
)
def enroll_participant(session_id: UUID, data: ParticipantEnroll, db: Session = Depends(get_db)):
    """
    Enroll an identity in a session.

    Preconditions:
    - session exists and has not started
    - identity not enrolled in this session yet
    """
    participant = ParticipantRegistry.enroll(
        db,
        session_id,
        identity=data.identity,
        nickname=data.nickname,
        initial_lives=data.initial_lives
    )
    logger.info(f"Enrolled {data.nickname} in session {session_id}")
    return participant


@router.get("/sessions/{session_id}/participants", response_model=List[ParticipantResponse])
def list_participants(session_id: UUID, db: Session = Depends(get_db)):
    SessionManager.get_session_by_id(db, session_id)
    return ParticipantRegistry.list_participants(db, session_id)


@router.get("/participants/{participant_id}", response_model=ParticipantResponse)
def get_participant(participant_id: UUID, db: Session = Depends(get_db)):
    return ParticipantRegistry.get_participant(db, participant_id)


@router.post("/participants/{participant_id}/activate", response_model=ParticipantResponse)
def activate_participant(participant_id: UUID, db: Session = Depends(get_db)):
    """Enter the lobby. Calling it again is harmless."""
    return ParticipantRegistry.activate(db, participant_id)


@router.post("/participants/{participant_id}/deactivate", response_model=DeactivateResponse)
def deactivate_participant(participant_id: UUID, db: Session = Depends(get_db)):
    """
    Leave the lobby.

    locked=true: the roster is frozen for the upcoming start, the participant
    stays in.
    """
    participant, locked = ParticipantRegistry.deactivate(db, participant_id)
    return DeactivateResponse(
        participant=ParticipantResponse.model_validate(participant),
        locked=locked
    )


@router.post("/participants/{participant_id}/heartbeat", response_model=ActionResponse)
def heartbeat(participant_id: UUID, db: Session = Depends(get_db)):
    TimeoutReaper.record_activity(db, participant_id)
    return ActionResponse(status="ok")


@router.get("/participants/{participant_id}/history", response_model=List[HistoryEntry])
def get_participant_history(participant_id: UUID, db: Session = Depends(get_db)):
    """Resolved rounds this participant played, oldest first."""
    participant = ParticipantRegistry.get_participant(db, participant_id)
    return get_participant_round_history(db, participant.session_id, participant.id)
