from datetime import datetime, timedelta
from typing import NamedTuple, Optional
from sqlalchemy.exc import IntegrityError
from coachcal.database import get_db
from coachcal.models import CoachTimeline, SchedulableEvent
from coachcal.models.event import SchedulingStatus
from coachcal.utils.clock import Clock, SystemClock
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)


class ClaimResult(NamedTuple):
    claimed: bool
    conflicting_event_id: Optional[int] = None
    version: Optional[int] = None

    @property
    def is_conflict(self) -> bool:
        return not self.claimed


class SlotClaimCoordinator:
    """Linearizes confirmations per coach.

    A claim re-reads the coach's confirmed events and then bumps the
    coach's timeline version with a conditional UPDATE. Two sessions that
    read the same version cannot both bump it, so the loser re-reads and
    either finds the winner's event or retries on the fresh version. The
    claim runs inside the caller's transaction, which must also write the
    confirmation before committing.
    """

    def __init__(self, clock: Clock = None, max_attempts: int = None):
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts or Config.CLAIM_MAX_ATTEMPTS

    def claim(self, db, coach_id: int, start: datetime, end: datetime,
              event_id: int = None, buffer_minutes: int = 0) -> ClaimResult:
        for attempt in range(1, self.max_attempts + 1):
            observed = db.query(CoachTimeline.version).filter(
                CoachTimeline.coach_id == coach_id
            ).scalar()
            if observed is None:
                db.add(CoachTimeline(coach_id=coach_id, version=0))
                db.flush()
                observed = 0

            conflict = self._find_overlap(db, coach_id, start, end, event_id, buffer_minutes)
            if conflict is not None:
                logger.info(f"Claim for coach {coach_id} {start.isoformat()} - {end.isoformat()} "
                            f"conflicts with event {conflict}")
                return ClaimResult(False, conflicting_event_id=conflict)

            updated = db.query(CoachTimeline).filter(
                CoachTimeline.coach_id == coach_id,
                CoachTimeline.version == observed
            ).update({
                CoachTimeline.version: observed + 1,
                CoachTimeline.last_claimed_at: self.clock.now(),
                CoachTimeline.last_claimed_event_id: event_id
            }, synchronize_session=False)

            if updated == 1:
                return ClaimResult(True, version=observed + 1)

            logger.info(f"Claim for coach {coach_id} lost compare-and-set on version {observed} "
                        f"(attempt {attempt})")

        return ClaimResult(False)

    def ensure_timeline(self, coach_id: int):
        """Create the coach's timeline row; call before opening the claiming transaction"""
        try:
            with get_db() as db:
                if not db.query(CoachTimeline.id).filter_by(coach_id=coach_id).first():
                    db.add(CoachTimeline(coach_id=coach_id, version=0))
        except IntegrityError:
            # Created concurrently
            pass

    def _find_overlap(self, db, coach_id, start, end, event_id, buffer_minutes) -> Optional[int]:
        pad = timedelta(minutes=buffer_minutes or 0)
        query = db.query(SchedulableEvent.id).filter(
            SchedulableEvent.host_user_id == coach_id,
            SchedulableEvent.scheduling_status == SchedulingStatus.CONFIRMED,
            SchedulableEvent.start_date_time < end + pad,
            SchedulableEvent.end_date_time > start - pad
        )
        if event_id is not None:
            query = query.filter(SchedulableEvent.id != event_id)
        row = query.order_by(SchedulableEvent.start_date_time).first()
        return row[0] if row else None
