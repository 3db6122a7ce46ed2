"""
Tests for the choice ledger (selections, finals, submission checks).
"""

import pytest

from models import Choice, Gesture, Participant, RoundPhase
from core.exceptions import InvalidChoice, NotLiving, WrongPhase
from core.registry import ParticipantRegistry
from core.round_manager import RoundManager
from core.session_manager import SessionManager
from services import ledger_service

R, P, S = Gesture.ROCK, Gesture.PAPER, Gesture.SCISSORS


def test_resubmitting_selection_overwrites(db, started_game):
    game_session, players, round_obj = started_game(players=3)

    RoundManager.submit_selection(db, round_obj.id, players[0].id, [R])
    RoundManager.submit_selection(db, round_obj.id, players[0].id, [P, S])

    choices = db.query(Choice).filter(Choice.round_id == round_obj.id).all()
    assert len(choices) == 1
    assert choices[0].selected_gestures == ["paper", "scissors"]


def test_duplicate_gestures_rejected(db, started_game):
    game_session, players, round_obj = started_game(players=3)
    with pytest.raises(InvalidChoice):
        RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, R])


def test_three_gestures_rejected(db, started_game):
    game_session, players, round_obj = started_game(players=3)
    with pytest.raises(InvalidChoice):
        RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, P, S])


def test_unknown_gesture_rejected(db, started_game):
    game_session, players, round_obj = started_game(players=3)
    with pytest.raises(InvalidChoice):
        RoundManager.submit_selection(db, round_obj.id, players[0].id, ["lizard", "rock"])


def test_final_outside_exclude_one_is_wrong_phase(db, started_game):
    game_session, players, round_obj = started_game(players=3)
    RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, P])
    with pytest.raises(WrongPhase):
        RoundManager.submit_final(db, round_obj.id, players[0].id, kept=R)


def test_selection_after_select_two_is_wrong_phase(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    for p in players:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])
    db.refresh(round_obj)
    assert round_obj.phase == RoundPhase.EXCLUDE_ONE

    with pytest.raises(WrongPhase):
        RoundManager.submit_selection(db, round_obj.id, players[0].id, [S, P])


def test_kept_gesture_must_be_selected(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    for p in players:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])
    with pytest.raises(InvalidChoice):
        RoundManager.submit_final(db, round_obj.id, players[0].id, kept=S)


def test_dropped_gesture_translates_to_kept(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    for p in players:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])

    choice, _ = RoundManager.submit_final(db, round_obj.id, players[0].id, dropped=R)

    assert choice.final_gesture == P


def test_kept_and_dropped_together_rejected(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    with pytest.raises(InvalidChoice):
        RoundManager.submit_final(db, round_obj.id, players[0].id, kept=R, dropped=P)


def test_non_living_participant_cannot_submit(db, make_session):
    game_session, players = make_session(players=3)
    bystander = ParticipantRegistry.enroll(db, game_session.id, identity="late", nickname="Late")
    round_obj = SessionManager.start_game(db, game_session.id).next_round

    with pytest.raises(NotLiving):
        RoundManager.submit_selection(db, round_obj.id, bystander.id, [R, P])


def test_all_submitted_select_two_needs_two_gestures(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    living_ids = [p.id for p in players]

    RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, P])
    RoundManager.submit_selection(db, round_obj.id, players[1].id, [R])

    assert not ledger_service.all_submitted(db, round_obj.id, RoundPhase.SELECT_TWO, living_ids)
    assert not ledger_service.all_submitted(db, round_obj.id, RoundPhase.SELECT_TWO, [])


def test_all_submitted_exclude_one_ignores_players_without_selection(db, started_game):
    game_session, players, round_obj = started_game(players=3)
    living_ids = [p.id for p in players]
    RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, P])

    assert not ledger_service.all_submitted(db, round_obj.id, RoundPhase.EXCLUDE_ONE, living_ids)
    assert ledger_service.all_submitted(db, round_obj.id, RoundPhase.EXCLUDE_ONE, [players[1].id, players[2].id])


def test_tally_counts_only_living_finalized(db, started_game):
    game_session, players, round_obj = started_game(players=3, lives=3)
    for p in players:
        RoundManager.submit_selection(db, round_obj.id, p.id, [R, P])
    RoundManager.submit_final(db, round_obj.id, players[0].id, kept=R)
    RoundManager.submit_final(db, round_obj.id, players[1].id, kept=P)

    tally = ledger_service.tally(db, round_obj.id, [players[0].id, players[2].id])

    assert tally.to_dict() == {"rock": 1, "paper": 0, "scissors": 0}


def test_single_gesture_selection_counts_as_final(db, started_game):
    game_session, players, round_obj = started_game(players=3, lives=3)
    RoundManager.submit_selection(db, round_obj.id, players[0].id, [R, P])
    RoundManager.submit_selection(db, round_obj.id, players[1].id, [R, P])
    RoundManager.submit_selection(db, round_obj.id, players[2].id, [P])

    RoundManager.tick(db, game_session.id, elapsed=10)
    db.refresh(round_obj)
    assert round_obj.phase == RoundPhase.EXCLUDE_ONE
    assert ledger_service.get_choice(db, round_obj.id, players[2].id).final_gesture == P

    RoundManager.submit_final(db, round_obj.id, players[0].id, kept=R)
    _, transitions = RoundManager.submit_final(db, round_obj.id, players[1].id, kept=R)

    # nobody left to wait for: resolved without the timer running out
    assert transitions == [RoundPhase.REVEALING]
    db.refresh(round_obj)
    assert (round_obj.rock_count, round_obj.paper_count, round_obj.scissors_count) == (2, 1, 0)
    assert round_obj.losing_gestures == ["paper"]
    assert round_obj.deltas[0]["reason"] == "round_loss"

    lives = [db.get(Participant, p.id).current_lives for p in players]
    assert lives == [3, 3, 2]


def test_single_gesture_is_not_final_during_select_two(db, started_game):
    game_session, players, round_obj = started_game(players=2)
    RoundManager.submit_selection(db, round_obj.id, players[0].id, [S])

    assert ledger_service.get_choice(db, round_obj.id, players[0].id).final_gesture is None
