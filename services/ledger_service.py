"""
Choice ledger: per-round selections and final gestures.

One Choice row per (round, participant). Every submission is an upsert, so
resubmitting before the deadline overwrites and never duplicates.

Functions here do not lock or commit; RoundManager calls them while holding
the session lock inside its own transaction.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import Choice, Gesture, Participant, Round, RoundPhase
from core.exceptions import InvalidChoice, NotLiving, WrongPhase
from core.utils import utcnow


@dataclass(frozen=True)
class Tally:
    rock: int = 0
    paper: int = 0
    scissors: int = 0

    def count(self, gesture: Gesture) -> int:
        return getattr(self, gesture.value)

    def present(self) -> List[Gesture]:
        """Gestures with a non-zero count, in rock/paper/scissors order."""
        return [g for g in Gesture if self.count(g) > 0]

    def to_dict(self) -> Dict[str, int]:
        return {"rock": self.rock, "paper": self.paper, "scissors": self.scissors}


def get_choice(db: Session, round_id: UUID, participant_id: UUID) -> Optional[Choice]:
    return db.query(Choice).filter(
        Choice.round_id == round_id,
        Choice.participant_id == participant_id
    ).first()


def get_choices(db: Session, round_id: UUID) -> List[Choice]:
    return db.query(Choice).filter(Choice.round_id == round_id).all()


def record_selection(db: Session, round_obj: Round, participant: Participant, gestures: Iterable) -> Choice:
    """
    Record (or overwrite) a participant's selection for the selectTwo phase.

    Rules:
        - round must be in selectTwo
        - participant must be living and belong to the round's session
        - 1 or 2 gestures, no duplicates

    Raises:
        WrongPhase, NotLiving, InvalidChoice
    """
    if round_obj.phase != RoundPhase.SELECT_TWO:
        raise WrongPhase(
            f"Selections are only accepted during selectTwo (round is {round_obj.phase.value})"
        )
    _ensure_living(round_obj, participant)

    selected = _normalize_gestures(gestures)
    if not 1 <= len(selected) <= 2:
        raise InvalidChoice(f"Select one or two gestures, got {len(selected)}")
    if len(set(selected)) != len(selected):
        raise InvalidChoice("Selected gestures must be different")

    choice = get_choice(db, round_obj.id, participant.id)
    if choice is None:
        choice = Choice(round_id=round_obj.id, participant_id=participant.id)
        db.add(choice)

    # overwrite, a new selection also invalidates any earlier final
    choice.selected_gestures = [g.value for g in selected]
    choice.final_gesture = None
    choice.submitted_at = utcnow()
    db.flush()
    return choice


def record_final(db: Session, round_obj: Round, participant: Participant, kept_gesture) -> Choice:
    """
    Record (or overwrite) the gesture a participant keeps in excludeOne.

    Raises:
        WrongPhase: round is not in excludeOne
        NotLiving: participant is not living
        InvalidChoice: no selection recorded, or kept gesture not selected
    """
    if round_obj.phase != RoundPhase.EXCLUDE_ONE:
        raise WrongPhase(
            f"Final gestures are only accepted during excludeOne (round is {round_obj.phase.value})"
        )
    _ensure_living(round_obj, participant)

    kept = _normalize_gestures([kept_gesture])[0]
    choice = get_choice(db, round_obj.id, participant.id)
    if choice is None or not choice.selected_gestures:
        raise InvalidChoice("No selection recorded for this round")
    if kept.value not in choice.selected_gestures:
        raise InvalidChoice(
            f"{kept.value} is not among the selected gestures {choice.selected_gestures}"
        )

    choice.final_gesture = kept
    choice.submitted_at = utcnow()
    db.flush()
    return choice


def kept_from_dropped(db: Session, round_obj: Round, participant: Participant, dropped_gesture) -> Gesture:
    """
    Translate "drop this one" into the gesture that stays.

    Raises:
        InvalidChoice: no two-gesture selection, or dropped gesture not selected
    """
    dropped = _normalize_gestures([dropped_gesture])[0]
    choice = get_choice(db, round_obj.id, participant.id)
    if choice is None or len(choice.selected_gestures or []) != 2:
        raise InvalidChoice("Dropping requires a two-gesture selection")
    if dropped.value not in choice.selected_gestures:
        raise InvalidChoice(
            f"{dropped.value} is not among the selected gestures {choice.selected_gestures}"
        )
    remaining = [g for g in choice.selected_gestures if g != dropped.value]
    return Gesture(remaining[0])


def finalize_single_selections(db: Session, round_id: UUID) -> int:
    """
    A one-gesture selection has nothing to drop: its gesture becomes the
    final gesture when excludeOne begins.

    Returns:
        number of choices finalized
    """
    count = 0
    for choice in get_choices(db, round_id):
        if choice.final_gesture is None and len(choice.selected_gestures or []) == 1:
            choice.final_gesture = Gesture(choice.selected_gestures[0])
            count += 1
    if count:
        db.flush()
    return count


def all_submitted(db: Session, round_id: UUID, phase: RoundPhase, living_ids: Iterable[UUID]) -> bool:
    """
    True when nobody in the living set is still expected to act in `phase`.

    selectTwo:  every living participant holds exactly two gestures
                (an empty living set is never "all submitted")
    excludeOne: every living participant holding a selection has a final
                gesture; participants without a selection cannot act, so an
                empty pending set means there is nothing to wait for
    """
    living = set(living_ids)
    choices = {c.participant_id: c for c in get_choices(db, round_id) if c.participant_id in living}

    if phase == RoundPhase.SELECT_TWO:
        if not living:
            return False
        return all(
            pid in choices and len(choices[pid].selected_gestures or []) == 2
            for pid in living
        )

    if phase == RoundPhase.EXCLUDE_ONE:
        pending = [c for c in choices.values() if c.selected_gestures]
        return all(c.final_gesture is not None for c in pending)

    return False


def tally(db: Session, round_id: UUID, living_ids: Iterable[UUID]) -> Tally:
    """Count final gestures of living, finalized participants. Everyone else is excluded."""
    living = set(living_ids)
    counts = {g: 0 for g in Gesture}
    for choice in get_choices(db, round_id):
        if choice.participant_id in living and choice.final_gesture is not None:
            counts[choice.final_gesture] += 1
    return Tally(
        rock=counts[Gesture.ROCK],
        paper=counts[Gesture.PAPER],
        scissors=counts[Gesture.SCISSORS]
    )


def finalized_ids(db: Session, round_id: UUID) -> Dict[UUID, Gesture]:
    """participant_id -> final gesture, for every finalized choice of the round."""
    return {
        c.participant_id: c.final_gesture
        for c in get_choices(db, round_id)
        if c.final_gesture is not None
    }


def _ensure_living(round_obj: Round, participant: Participant) -> None:
    if participant.session_id != round_obj.session_id:
        raise NotLiving(f"Participant {participant.id} is not part of this session")
    if not participant.is_living:
        raise NotLiving(f"Participant {participant.id} is not living")


def _normalize_gestures(values: Iterable) -> List[Gesture]:
    result = []
    for value in values:
        try:
            result.append(value if isinstance(value, Gesture) else Gesture(value))
        except ValueError:
            raise InvalidChoice(f"Unknown gesture: {value!r}")
    return result
