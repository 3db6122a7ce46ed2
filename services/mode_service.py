"""
Mode service: preliminary vs finals.

- More than finals_threshold (4) living participants: PRELIMINARY
- finals_threshold or fewer: FINALS

The mode changes presentation, not the resolution table (except the
three-gestures case, see resolution_service). In finals every player's two
selected gestures are shown once excludeOne begins so the remaining players
can read each other before dropping one.
"""
from typing import Optional

from models import Choice, GameMode, Round, RoundPhase
from database import get_settings


REVEALED_PHASES = (RoundPhase.REVEALING, RoundPhase.COMPLETED)


def mode_for_count(living_count: int) -> GameMode:
    """
    Examples:
        mode_for_count(12) -> GameMode.PRELIMINARY
        mode_for_count(5)  -> GameMode.PRELIMINARY
        mode_for_count(4)  -> GameMode.FINALS
        mode_for_count(2)  -> GameMode.FINALS
    """
    if living_count <= get_settings().finals_threshold:
        return GameMode.FINALS
    return GameMode.PRELIMINARY


def is_finals_round(round_obj: Round) -> bool:
    return round_obj.mode == GameMode.FINALS


def selection_visible(round_obj: Round) -> bool:
    """Can other players see a participant's two selected gestures right now?"""
    if round_obj.phase in REVEALED_PHASES:
        return True
    return is_finals_round(round_obj) and round_obj.phase == RoundPhase.EXCLUDE_ONE


def final_visible(round_obj: Round) -> bool:
    """Final gestures stay hidden until the reveal."""
    return round_obj.phase in REVEALED_PHASES


def public_choice_view(round_obj: Round, choice: Choice, viewer_id: Optional[str] = None) -> dict:
    """
    A choice as other clients may see it.

    The viewer always sees their own choice in full; everyone else sees only
    what the mode's visibility rule allows, plus whether they have acted.
    """
    own = viewer_id is not None and str(choice.participant_id) == str(viewer_id)
    show_selection = own or selection_visible(round_obj)
    show_final = own or final_visible(round_obj)
    return {
        "participant_id": str(choice.participant_id),
        "has_selected": bool(choice.selected_gestures),
        "has_finalized": choice.final_gesture is not None,
        "selected_gestures": list(choice.selected_gestures or []) if show_selection else None,
        "final_gesture": choice.final_gesture.value if (show_final and choice.final_gesture) else None,
    }
