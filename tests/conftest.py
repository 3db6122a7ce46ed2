"""
Pytest fixtures for Drop-One tests.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_settings
from core.registry import ParticipantRegistry
from core.round_manager import RoundManager
from core.session_manager import SessionManager


@pytest.fixture(autouse=True)
def game_settings(monkeypatch):
    """
    Short, deterministic timers for every test.

    waiting is 0 so a new round opens straight in selectTwo; revealing keeps
    a real duration so tests can observe the reveal before the next round.
    """
    settings = get_settings()
    monkeypatch.setattr(settings, "waiting_seconds", 0)
    monkeypatch.setattr(settings, "select_two_seconds", 10)
    monkeypatch.setattr(settings, "exclude_one_seconds", 10)
    monkeypatch.setattr(settings, "revealing_seconds", 5)
    monkeypatch.setattr(settings, "finals_threshold", 4)
    monkeypatch.setattr(settings, "timeout_penalty_lives", 1)
    monkeypatch.setattr(settings, "default_initial_lives", 5)
    monkeypatch.setattr(settings, "roster_lock_seconds", 60)
    monkeypatch.setattr(settings, "inactivity_timeout_seconds", 180)
    monkeypatch.setattr(settings, "scheduler_token", None)
    return settings


@pytest.fixture
def engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_session(db):
    """
    Factory: a session with `players` enrolled (and activated by default).

    Returns (game_session, [participants]).
    """
    def _make(players=0, lives=5, activate=True, name="Test Session", **kwargs):
        game_session = SessionManager.create_session(db, name=name, initial_lives=lives, **kwargs)
        participants = []
        for i in range(players):
            participant = ParticipantRegistry.enroll(
                db, game_session.id, identity=f"user-{i}", nickname=f"Player {i}"
            )
            if activate:
                participant = ParticipantRegistry.activate(db, participant.id)
            participants.append(participant)
        return game_session, participants

    return _make


@pytest.fixture
def started_game(db, make_session):
    """Factory: a started session; returns (game_session, participants, round 1)."""
    def _start(players=5, lives=5):
        game_session, participants = make_session(players=players, lives=lives)
        decision = SessionManager.start_game(db, game_session.id)
        return game_session, participants, decision.next_round

    return _start


def play_finals(db, round_obj, finals):
    """
    Submit selections then finals for {participant: (selection, kept)}.

    Selections are made first for everyone so the round only leaves
    selectTwo once all of them are in.
    """
    for participant, (selection, _) in finals.items():
        RoundManager.submit_selection(db, round_obj.id, participant.id, selection)
    for participant, (_, kept) in finals.items():
        RoundManager.submit_final(db, round_obj.id, participant.id, kept=kept)
    db.refresh(round_obj)
    return round_obj


@pytest.fixture
def play(db):
    """play(round_obj, {participant: (selection, kept)}) -> refreshed round"""
    return lambda round_obj, finals: play_finals(db, round_obj, finals)
