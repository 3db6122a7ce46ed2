"""
Data models

GameSession  -- one tournament, owns participants and rounds
Participant  -- a player enrolled in a session, carries lives and status
Round        -- one pass through the phase state machine
Choice       -- a participant's selection / final gesture for one round
EventLog     -- every emitted event, the durable side of the notification channel
"""
import enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from database import Base
from core.utils import utcnow


class SessionStatus(str, enum.Enum):
    WAITING = "waiting"
    STARTING = "starting"        # roster locked, scheduled start imminent
    IN_PROGRESS = "in_progress"  # preliminary rounds
    FINALS = "finals"
    COMPLETED = "completed"
    CLOSED = "closed"


PLAYING_STATUSES = (SessionStatus.IN_PROGRESS, SessionStatus.FINALS)
PRE_GAME_STATUSES = (SessionStatus.WAITING, SessionStatus.STARTING)
TERMINAL_STATUSES = (SessionStatus.COMPLETED, SessionStatus.CLOSED)


class ParticipantStatus(str, enum.Enum):
    ENROLLED = "enrolled"
    ACTIVE = "active"
    ELIMINATED = "eliminated"
    WINNER = "winner"


class EliminationReason(str, enum.Enum):
    ROUND_LOSS = "round_loss"
    CHOICE_TIMEOUT = "choice_timeout"
    INACTIVITY = "inactivity"


class RoundPhase(str, enum.Enum):
    WAITING = "waiting"
    SELECT_TWO = "selectTwo"
    EXCLUDE_ONE = "excludeOne"
    REVEALING = "revealing"
    COMPLETED = "completed"


class GameMode(str, enum.Enum):
    PRELIMINARY = "preliminary"
    FINALS = "finals"


class RoundOutcome(str, enum.Enum):
    NO_CONTEST = "no_contest"    # nobody finalized
    REPLAY = "replay"            # no preference signal, survivors unchanged
    ELIMINATION = "elimination"  # at least one gesture lost


class Gesture(str, enum.Enum):
    ROCK = "rock"
    PAPER = "paper"
    SCISSORS = "scissors"


class EventType(str, enum.Enum):
    PHASE_CHANGED = "phaseChanged"
    CHOICE_RECORDED = "choiceRecorded"
    ROUND_CREATED = "roundCreated"
    ROUND_RESOLVED = "roundResolved"
    PARTICIPANT_ENROLLED = "participantEnrolled"
    PARTICIPANT_ACTIVATED = "participantActivated"
    PARTICIPANT_DEACTIVATED = "participantDeactivated"
    PARTICIPANT_ELIMINATED = "participantEliminated"
    SESSION_CREATED = "sessionCreated"
    SESSION_STATUS_CHANGED = "sessionStatusChanged"
    SESSION_COMPLETED = "sessionCompleted"


class GameSession(Base):
    __tablename__ = "game_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    venue = Column(String(100), nullable=True)
    prize = Column(String(200), nullable=True)
    initial_lives = Column(Integer, nullable=False)
    status = Column(Enum(SessionStatus), nullable=False, default=SessionStatus.WAITING)
    current_round_number = Column(Integer, nullable=False, default=0)
    winner_id = Column(Uuid, nullable=True)
    state_version = Column(Integer, nullable=False, default=0)
    scheduled_start_at = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    participants = relationship("Participant", back_populates="session", order_by="Participant.joined_at")
    rounds = relationship("Round", back_populates="session", order_by="Round.round_number")


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("session_id", "identity", name="uq_participant_identity"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("game_sessions.id"), nullable=False, index=True)
    identity = Column(String(100), nullable=False)
    nickname = Column(String(50), nullable=False)
    initial_lives = Column(Integer, nullable=False)
    current_lives = Column(Integer, nullable=False)
    status = Column(Enum(ParticipantStatus), nullable=False, default=ParticipantStatus.ENROLLED)
    elimination_reason = Column(Enum(EliminationReason), nullable=True)
    joined_at = Column(DateTime, nullable=False, default=utcnow)
    last_active_at = Column(DateTime, nullable=True)
    eliminated_at = Column(DateTime, nullable=True)

    session = relationship("GameSession", back_populates="participants")

    @property
    def is_living(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE and self.current_lives > 0


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("session_id", "round_number", name="uq_round_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("game_sessions.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    mode = Column(Enum(GameMode), nullable=False, default=GameMode.PRELIMINARY)
    phase = Column(Enum(RoundPhase), nullable=False, default=RoundPhase.WAITING)
    time_left = Column(Integer, nullable=False, default=0)

    rock_count = Column(Integer, nullable=False, default=0)
    paper_count = Column(Integer, nullable=False, default=0)
    scissors_count = Column(Integer, nullable=False, default=0)
    losing_gestures = Column(JSON, nullable=False, default=list)
    outcome = Column(Enum(RoundOutcome), nullable=True)
    deltas = Column(JSON, nullable=False, default=list)
    resolved = Column(Boolean, nullable=False, default=False)

    started_at = Column(DateTime, nullable=False, default=utcnow)
    phase_started_at = Column(DateTime, nullable=False, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    session = relationship("GameSession", back_populates="rounds")
    choices = relationship("Choice", back_populates="round")


class Choice(Base):
    __tablename__ = "choices"
    __table_args__ = (
        UniqueConstraint("round_id", "participant_id", name="uq_choice_per_round"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    round_id = Column(Uuid, ForeignKey("rounds.id"), nullable=False, index=True)
    participant_id = Column(Uuid, ForeignKey("participants.id"), nullable=False)
    selected_gestures = Column(JSON, nullable=False, default=list)
    final_gesture = Column(Enum(Gesture), nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=utcnow)

    round = relationship("Round", back_populates="choices")
    participant = relationship("Participant")


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Uuid, ForeignKey("game_sessions.id"), nullable=False, index=True)
    round_id = Column(Uuid, nullable=True)
    event_type = Column(String(50), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)
