"""
Scheduler API Endpoints

Called by an external cron / ticker, never by players. The core has no
timers of its own: every countdown, scheduled start and inactivity check
advances only when one of these endpoints is hit.

When settings.scheduler_token is set, requests must carry
`Authorization: Bearer <token>`.
"""
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from database import get_db, get_settings
from schemas import SchedulerReport, TickRequest, TickResponse, TimeoutRequest
from core.round_manager import RoundManager
from core.session_manager import SessionManager
from core.timeout_reaper import TimeoutReaper

logger = logging.getLogger(__name__)


def verify_scheduler_token(authorization: Optional[str] = Header(None)) -> None:
    expected = get_settings().scheduler_token
    if not expected:
        return
    if authorization != f"Bearer {expected}":
        logger.warning("Rejected scheduler call with missing or wrong token")
        raise HTTPException(status_code=401, detail="Unauthorized")


router = APIRouter(
    prefix="/api/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(verify_scheduler_token)]
)


@router.post("/tick", response_model=SchedulerReport)
def tick_all(data: Optional[TickRequest] = None, db: Session = Depends(get_db)):
    """Advance the timers of every session in play by `elapsed` seconds."""
    elapsed = data.elapsed if data else 1
    results = RoundManager.tick_all(db, elapsed)
    return SchedulerReport(count=len(results), results=results)


@router.post("/sessions/{session_id}/tick", response_model=TickResponse)
def tick_session(session_id: UUID, data: Optional[TickRequest] = None, db: Session = Depends(get_db)):
    elapsed = data.elapsed if data else 1
    return RoundManager.tick(db, session_id, elapsed).__dict__


@router.post("/timeouts", response_model=SchedulerReport)
def check_timeouts(data: Optional[TimeoutRequest] = None, db: Session = Depends(get_db)):
    """Reap participants idle for longer than the inactivity threshold."""
    threshold = data.threshold_seconds if data else None
    reaped = TimeoutReaper.check_and_timeout(db, threshold_seconds=threshold)
    return SchedulerReport(count=len(reaped), results=reaped)


@router.post("/start-due", response_model=SchedulerReport)
def start_due_sessions(db: Session = Depends(get_db)):
    """Lock rosters and start sessions whose scheduled start has come."""
    results = SessionManager.start_due_sessions(db)
    return SchedulerReport(count=len(results), results=results)
