import copy
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy.exc import IntegrityError
from coachcal.database import get_db
from coachcal.errors import NotFound, ValidationError
from coachcal.models import AvailabilityProfile, BlockedSlot, CoachTimeline, User
from coachcal.utils.validators import (
    validate_weekly_schedule, validate_timezone, validate_positive_minutes, validate_time_range
)
from config.config import Config
from coachcal.utils.logger import get_logger

logger = get_logger(__name__)

EDITABLE_FIELDS = (
    'timezone', 'weekly_schedule', 'minimum_notice_minutes',
    'default_slot_duration_minutes', 'buffer_minutes'
)


class AvailabilityService:
    """Per-coach weekly template, notice rule and blocked periods"""

    def get_profile(self, coach_id: int, db=None) -> AvailabilityProfile:
        """Return the coach's profile, creating the default one on first read"""
        if db is not None:
            return self._get_or_create(db, coach_id)

        try:
            with get_db() as db:
                return self._get_or_create(db, coach_id)
        except IntegrityError:
            # Another request created it first
            with get_db() as db:
                profile = db.query(AvailabilityProfile).filter_by(coach_id=coach_id).first()
                if not profile:
                    raise
                return profile

    def update_profile(self, coach_id: int, changes: Dict) -> AvailabilityProfile:
        """Merge ``changes`` into the profile; last writer wins"""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile field(s): {', '.join(sorted(unknown))}")

        validated = {}
        if 'timezone' in changes:
            validated['timezone'] = validate_timezone(changes['timezone'])
        if 'weekly_schedule' in changes:
            validated['weekly_schedule'] = validate_weekly_schedule(changes['weekly_schedule'])
        if 'default_slot_duration_minutes' in changes:
            validated['default_slot_duration_minutes'] = validate_positive_minutes(
                changes['default_slot_duration_minutes'], 'default_slot_duration_minutes'
            )
        for field in ('minimum_notice_minutes', 'buffer_minutes'):
            if field in changes:
                value = changes[field]
                if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                    raise ValidationError(f"{field} must be a non-negative whole number")
                validated[field] = value

        self.get_profile(coach_id)

        with get_db() as db:
            profile = db.query(AvailabilityProfile).filter_by(coach_id=coach_id).one()
            for key, value in validated.items():
                setattr(profile, key, value)
            profile.revision = (profile.revision or 1) + 1
            db.flush()

            logger.info(f"Availability profile for coach {coach_id} updated to revision {profile.revision}")
            return profile

    def add_blocked_slot(self, coach_id: int, start: datetime, end: datetime,
                         reason: Optional[str] = None) -> BlockedSlot:
        """Block an absolute period; adding the same period twice returns the existing row"""
        validate_time_range(start, end)
        profile = self.get_profile(coach_id)

        with get_db() as db:
            existing = db.query(BlockedSlot).filter_by(
                profile_id=profile.id, start=start, end=end
            ).first()
            if existing:
                return existing

            slot = BlockedSlot(profile_id=profile.id, start=start, end=end, reason=reason)
            db.add(slot)
            db.flush()
            logger.info(f"Coach {coach_id} blocked {start.isoformat()} - {end.isoformat()}")
            return slot

    def remove_blocked_slot(self, coach_id: int, slot_id: int) -> bool:
        """Remove a blocked period; an unknown id is a successful no-op"""
        profile = self.get_profile(coach_id)

        with get_db() as db:
            slot = db.query(BlockedSlot).filter_by(id=slot_id, profile_id=profile.id).first()
            if not slot:
                return False
            db.delete(slot)
            logger.info(f"Coach {coach_id} removed blocked slot {slot_id}")
            return True

    def list_blocked_slots(self, coach_id: int, start: datetime = None, end: datetime = None,
                           db=None) -> List[BlockedSlot]:
        """Blocked periods overlapping [start, end), ordered by start"""
        if db is None:
            with get_db() as db:
                return self.list_blocked_slots(coach_id, start, end, db=db)

        query = db.query(BlockedSlot).join(AvailabilityProfile).filter(
            AvailabilityProfile.coach_id == coach_id
        )
        if start is not None:
            query = query.filter(BlockedSlot.end > start)
        if end is not None:
            query = query.filter(BlockedSlot.start < end)
        return query.order_by(BlockedSlot.start).all()

    def _get_or_create(self, db, coach_id: int) -> AvailabilityProfile:
        profile = db.query(AvailabilityProfile).filter_by(coach_id=coach_id).first()
        if profile:
            return profile

        coach = db.query(User).filter_by(id=coach_id).first()
        if not coach:
            raise NotFound('Coach not found')

        profile = AvailabilityProfile(
            coach_id=coach_id,
            timezone=self._detected_timezone(coach),
            weekly_schedule=copy.deepcopy(Config.DEFAULT_WEEKLY_SCHEDULE),
            minimum_notice_minutes=Config.DEFAULT_MINIMUM_NOTICE_MINUTES,
            default_slot_duration_minutes=Config.DEFAULT_SLOT_DURATION_MINUTES,
            buffer_minutes=Config.DEFAULT_BUFFER_MINUTES,
            revision=1
        )
        db.add(profile)

        if not db.query(CoachTimeline).filter_by(coach_id=coach_id).first():
            db.add(CoachTimeline(coach_id=coach_id, version=0))

        db.flush()
        logger.info(f"Created default availability profile for coach {coach_id} in {profile.timezone}")
        return profile

    def _detected_timezone(self, coach: User) -> str:
        if coach.timezone:
            try:
                return validate_timezone(coach.timezone)
            except ValidationError:
                logger.warning(f"Coach {coach.id} has unknown timezone {coach.timezone}, using default")
        return Config.DEFAULT_TIMEZONE
