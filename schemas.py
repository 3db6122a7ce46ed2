"""
Request / response models for the HTTP API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    EliminationReason,
    GameMode,
    Gesture,
    ParticipantStatus,
    RoundOutcome,
    RoundPhase,
    SessionStatus,
)


# ============ Requests ============

class SessionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    venue: Optional[str] = Field(None, max_length=100)
    prize: Optional[str] = Field(None, max_length=200)
    initial_lives: Optional[int] = Field(None, ge=1, le=99)
    scheduled_start_at: Optional[datetime] = None


class ParticipantEnroll(BaseModel):
    identity: str = Field(..., min_length=1, max_length=100)
    nickname: str = Field(..., min_length=1, max_length=50)
    initial_lives: Optional[int] = Field(None, ge=1, le=99)


class SelectionSubmit(BaseModel):
    participant_id: UUID
    gestures: List[Gesture] = Field(..., min_length=1, max_length=2)


class FinalSubmit(BaseModel):
    """Either the gesture kept or the gesture dropped, never both."""
    participant_id: UUID
    kept: Optional[Gesture] = None
    dropped: Optional[Gesture] = None

    @model_validator(mode="after")
    def exactly_one(self):
        if (self.kept is None) == (self.dropped is None):
            raise ValueError("Give exactly one of kept or dropped")
        return self


class TickRequest(BaseModel):
    elapsed: int = Field(1, ge=0, le=3600)


class TimeoutRequest(BaseModel):
    threshold_seconds: Optional[int] = Field(None, ge=0)


# ============ Responses ============

class ActionResponse(BaseModel):
    status: str = "ok"


class SessionResponse(BaseModel):
    id: UUID
    name: str
    venue: Optional[str] = None
    prize: Optional[str] = None
    initial_lives: int
    status: SessionStatus
    current_round_number: int
    winner_id: Optional[UUID] = None
    state_version: int
    scheduled_start_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ParticipantResponse(BaseModel):
    id: UUID
    session_id: UUID
    identity: str
    nickname: str
    initial_lives: int
    current_lives: int
    status: ParticipantStatus
    elimination_reason: Optional[EliminationReason] = None
    joined_at: datetime
    last_active_at: Optional[datetime] = None
    eliminated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DeactivateResponse(BaseModel):
    participant: ParticipantResponse
    locked: bool


class RoundResponse(BaseModel):
    id: UUID
    session_id: UUID
    round_number: int
    mode: GameMode
    phase: RoundPhase
    time_left: int
    rock_count: int
    paper_count: int
    scissors_count: int
    losing_gestures: List[str]
    outcome: Optional[RoundOutcome] = None
    resolved: bool
    started_at: datetime
    phase_started_at: datetime
    resolved_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChoiceView(BaseModel):
    participant_id: str
    has_selected: bool
    has_finalized: bool
    selected_gestures: Optional[List[str]] = None
    final_gesture: Optional[str] = None


class SubmissionResponse(BaseModel):
    status: str = "ok"
    choice: ChoiceView
    transitions: List[str] = []
    phase: RoundPhase


class LifeDeltaResponse(BaseModel):
    participant_id: str
    lives_lost: int
    lives_remaining: int
    reason: str
    eliminated: bool = False


class RoundResultResponse(BaseModel):
    round_id: str
    tally: Dict[str, int]
    outcome: RoundOutcome
    losing_gestures: List[Gesture]
    deltas: List[LifeDeltaResponse] = []
    already_resolved: bool = False


class StartGameResponse(BaseModel):
    session: SessionResponse
    living_count: int
    completed: bool
    winner_id: Optional[str] = None
    round: Optional[RoundResponse] = None


class GameStateResponse(BaseModel):
    session: SessionResponse
    participants: List[ParticipantResponse]
    living_count: int
    current_round: Optional[RoundResponse] = None
    choices: List[ChoiceView] = []
    roster_locked: bool


class EventResponse(BaseModel):
    id: int
    type: str
    session_id: str
    round_id: Optional[str] = None
    data: Dict[str, Any]
    created_at: str


class EventFeedResponse(BaseModel):
    state_version: int
    events: List[EventResponse]


class HistoryEntry(BaseModel):
    round_number: int
    mode: GameMode
    selected_gestures: List[str]
    final_gesture: Optional[str] = None
    outcome: Optional[RoundOutcome] = None
    losing_gestures: List[str]
    lives_lost: int
    reason: Optional[str] = None


class TickResponse(BaseModel):
    session_id: str
    session_status: SessionStatus
    round_id: Optional[str] = None
    round_number: Optional[int] = None
    phase: Optional[RoundPhase] = None
    time_left: Optional[int] = None
    transitions: List[str] = []
    current_round_number: int = 0
    winner_id: Optional[str] = None


class SchedulerReport(BaseModel):
    count: int
    results: List[Dict[str, Any]]
