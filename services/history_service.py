"""
Participant history service.

Builds a per-participant round history so clients can render the record
straight from the server instead of keeping their own log.
"""
from typing import List, Dict, Any
from uuid import UUID

from sqlalchemy.orm import Session

from models import Choice, Round


def get_participant_round_history(db: Session, session_id: UUID, participant_id: UUID) -> List[Dict[str, Any]]:
    """
    Return resolved rounds (round 1..N) the participant took part in.

    A round counts when the participant recorded a choice in it or lost
    lives in it (a timeout without any choice still shows up).
    Unresolved rounds are skipped so nothing leaks before the reveal.
    """
    rounds = (
        db.query(Round)
        .filter(Round.session_id == session_id, Round.resolved == True)  # noqa: E712
        .order_by(Round.round_number)
        .all()
    )
    choices = {
        c.round_id: c
        for c in db.query(Choice).filter(Choice.participant_id == participant_id).all()
    }

    history: List[Dict[str, Any]] = []
    pid = str(participant_id)

    for round_obj in rounds:
        choice = choices.get(round_obj.id)
        delta = next((d for d in round_obj.deltas or [] if d["participant_id"] == pid), None)
        if choice is None and delta is None:
            continue

        history.append({
            "round_number": round_obj.round_number,
            "mode": round_obj.mode.value,
            "selected_gestures": list(choice.selected_gestures or []) if choice else [],
            "final_gesture": choice.final_gesture.value if choice and choice.final_gesture else None,
            "outcome": round_obj.outcome.value if round_obj.outcome else None,
            "losing_gestures": list(round_obj.losing_gestures or []),
            "lives_lost": delta["lives_lost"] if delta else 0,
            "reason": delta["reason"] if delta else None,
        })

    return history
