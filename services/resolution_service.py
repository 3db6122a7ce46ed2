"""
Resolution service: majority-loses outcome of a round.

Pure decision (determine_outcome) plus the step that applies it to the store
(resolve_round). The decision table:

┌──────────────────────────┬──────────────────────────────────────────────┐
│ gestures present         │ result                                       │
├──────────────────────────┼──────────────────────────────────────────────┤
│ none                     │ no_contest, nobody loses from the tally      │
│ one                      │ replay, nobody loses from the tally          │
│ two, unequal counts      │ the smaller count loses                      │
│ two, equal counts        │ both sides lose                              │
│ three, finals            │ replay                                       │
│ three, preliminary       │ every gesture with the minimum count loses   │
└──────────────────────────┴──────────────────────────────────────────────┘

Independently of the table, a living participant with no final gesture pays
the timeout penalty in the same step.
"""
from dataclasses import dataclass, field
from typing import List, Tuple
import logging

from sqlalchemy.orm import Session

from models import (
    EliminationReason,
    EventType,
    GameMode,
    Gesture,
    Round,
    RoundOutcome,
)
from core.registry import LifeDelta, ParticipantRegistry
from core.utils import utcnow
from database import get_settings
from services.event_service import record_event
from services import ledger_service
from services.ledger_service import Tally

logger = logging.getLogger(__name__)


@dataclass
class RoundResult:
    round_id: str
    tally: Tally
    outcome: RoundOutcome
    losing_gestures: List[Gesture]
    deltas: List[LifeDelta] = field(default_factory=list)
    already_resolved: bool = False


def determine_outcome(tally: Tally, mode: GameMode) -> Tuple[RoundOutcome, List[Gesture]]:
    """
    Decide which gestures lose.

    Args:
        tally: final-gesture counts of finalized participants
        mode: preliminary or finals

    Returns:
        (outcome, losing gestures)

    Examples:
        rock 3, paper 1, scissors 1 (preliminary) -> elimination, [paper, scissors]
        rock 2, paper 2                           -> elimination, [rock, paper]
        rock 1, paper 1, scissors 1 (finals)      -> replay, []
        scissors 6                                -> replay, []
    """
    present = tally.present()

    if not present:
        return RoundOutcome.NO_CONTEST, []

    if len(present) == 1:
        return RoundOutcome.REPLAY, []

    if len(present) == 3 and mode == GameMode.FINALS:
        return RoundOutcome.REPLAY, []

    # two present, or three in preliminary: fewest loses, tied minorities all lose
    min_count = min(tally.count(g) for g in present)
    losing = [g for g in present if tally.count(g) == min_count]
    return RoundOutcome.ELIMINATION, losing


def resolve_round(db: Session, round_obj: Round) -> RoundResult:
    """
    Tally a round and apply every life loss in one step.

    Flow:
    1. Snapshot the living set and the finalized choices
    2. Tally and decide the losing gestures
    3. One life off every finalized loser
    4. Timeout penalty for every living participant without a final gesture
    5. Store tallies / outcome / deltas on the round, emit roundResolved

    Idempotent: a round already resolved is returned as-is with no new deltas.

    Notes:
        - caller holds the session lock and owns the transaction
        - does not change the round's phase (RoundManager does that)
    """
    if round_obj.resolved:
        logger.info(f"Round {round_obj.id} already resolved, skipping")
        return stored_result(round_obj)

    settings = get_settings()

    # 1. snapshot
    living = ParticipantRegistry.living_participants(db, round_obj.session_id)
    living_ids = [p.id for p in living]
    finals = ledger_service.finalized_ids(db, round_obj.id)

    # 2. decide
    tally = ledger_service.tally(db, round_obj.id, living_ids)
    outcome, losing = determine_outcome(tally, round_obj.mode)

    deltas: List[LifeDelta] = []
    for participant in living:
        final = finals.get(participant.id)

        # 3. tally losers
        if final is not None and final in losing:
            deltas.append(ParticipantRegistry.apply_life_delta(
                db, participant.id, -1, EliminationReason.ROUND_LOSS
            ))

        # 4. timeouts
        elif final is None and settings.timeout_penalty_lives > 0:
            deltas.append(ParticipantRegistry.apply_life_delta(
                db, participant.id, -settings.timeout_penalty_lives, EliminationReason.CHOICE_TIMEOUT
            ))

    # 5. store and notify
    round_obj.rock_count = tally.rock
    round_obj.paper_count = tally.paper
    round_obj.scissors_count = tally.scissors
    round_obj.losing_gestures = [g.value for g in losing]
    round_obj.outcome = outcome
    round_obj.deltas = [d.to_dict() for d in deltas]
    round_obj.resolved = True
    round_obj.resolved_at = utcnow()
    db.flush()

    logger.info(
        f"Round {round_obj.round_number} (session={round_obj.session_id}) resolved: "
        f"{tally.to_dict()} -> {outcome.value} {round_obj.losing_gestures}, "
        f"{len(deltas)} life deltas"
    )

    record_event(db, round_obj.session, EventType.ROUND_RESOLVED, {
        "round_id": str(round_obj.id),
        "round_number": round_obj.round_number,
        "tally": tally.to_dict(),
        "outcome": outcome.value,
        "losing_gestures": round_obj.losing_gestures,
        "deltas": round_obj.deltas,
    }, round_id=round_obj.id)

    return RoundResult(
        round_id=str(round_obj.id),
        tally=tally,
        outcome=outcome,
        losing_gestures=losing,
        deltas=deltas
    )


def stored_result(round_obj: Round) -> RoundResult:
    """Rebuild a RoundResult from a resolved round's stored columns."""
    return RoundResult(
        round_id=str(round_obj.id),
        tally=Tally(
            rock=round_obj.rock_count,
            paper=round_obj.paper_count,
            scissors=round_obj.scissors_count
        ),
        outcome=round_obj.outcome,
        losing_gestures=[Gesture(g) for g in round_obj.losing_gestures or []],
        deltas=[],
        already_resolved=True
    )
