"""
Tests for inactivity handling.
"""

from datetime import timedelta

from models import EliminationReason, Gesture, Participant, ParticipantStatus, RoundPhase, SessionStatus
from core.round_manager import RoundManager
from core.timeout_reaper import TimeoutReaper
from core.utils import utcnow

R, P = Gesture.ROCK, Gesture.PAPER


def test_idle_lobby_participant_returns_to_enrolled(db, make_session):
    game_session, players = make_session(players=2)

    reaped = TimeoutReaper.check_and_timeout(db, now=utcnow() + timedelta(seconds=181))

    assert {r["action"] for r in reaped} == {"deactivated"}
    for p in players:
        db.refresh(p)
        assert p.status == ParticipantStatus.ENROLLED


def test_recent_activity_is_not_reaped(db, make_session):
    game_session, players = make_session(players=1)
    assert TimeoutReaper.check_and_timeout(db, now=utcnow() + timedelta(seconds=60)) == []


def test_heartbeat_keeps_participant(db, make_session):
    game_session, players = make_session(players=2)
    later = utcnow() + timedelta(seconds=200)

    stamped = TimeoutReaper.record_activity(db, players[0].id)
    stamped.last_active_at = later
    db.commit()

    reaped = TimeoutReaper.check_and_timeout(db, now=later + timedelta(seconds=10))

    assert [r["participant_id"] for r in reaped] == [str(players[1].id)]


def test_idle_player_in_game_is_eliminated_keeping_lives(db, started_game):
    game_session, players, round_obj = started_game(players=3, lives=3)
    # two players keep playing
    for p in players[:2]:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])

    reaped = TimeoutReaper.check_and_timeout(db, threshold_seconds=0, now=utcnow() + timedelta(seconds=1))

    assert len(reaped) == 3
    for p in players:
        db.refresh(p)
        assert p.status == ParticipantStatus.ELIMINATED
        assert p.elimination_reason == EliminationReason.INACTIVITY
        assert p.current_lives == 3


def test_reaping_last_pending_player_advances_round(db, started_game):
    game_session, players, round_obj = started_game(players=3, lives=3)
    active, idle = players[:2], players[2]
    for p in active:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])

    # only the idle player is old enough to reap
    idle_obj = db.get(Participant, idle.id)
    idle_obj.last_active_at = utcnow() - timedelta(seconds=500)
    db.commit()

    reaped = TimeoutReaper.check_and_timeout(db)

    assert [r["participant_id"] for r in reaped] == [str(idle.id)]
    db.refresh(round_obj)
    assert round_obj.phase == RoundPhase.EXCLUDE_ONE


def test_reaping_down_to_one_player_keeps_round_running(db, started_game):
    game_session, players, round_obj = started_game(players=3, lives=1)
    survivor = players[0]
    RoundManager.submit_selection(db, round_obj.id, survivor.id, [R, P])

    for idle in players[1:]:
        db.get(Participant, idle.id).last_active_at = utcnow() - timedelta(seconds=500)
    db.commit()

    reaped = TimeoutReaper.check_and_timeout(db)

    assert len(reaped) == 2
    db.refresh(game_session)
    db.refresh(round_obj)
    # the winner is decided when the round completes, not when the field shrinks
    assert game_session.status == SessionStatus.FINALS
    assert game_session.winner_id is None
    assert round_obj.phase == RoundPhase.EXCLUDE_ONE

    RoundManager.submit_final(db, round_obj.id, survivor.id, kept=R)
    RoundManager.tick(db, game_session.id, elapsed=5)

    db.refresh(game_session)
    assert game_session.status == SessionStatus.COMPLETED
    assert game_session.winner_id == survivor.id
