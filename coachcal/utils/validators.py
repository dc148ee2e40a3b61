import re
from datetime import datetime, date
from typing import Dict, List, Tuple
import pytz
from coachcal.errors import ValidationError
from coachcal.models.availability import WEEKDAYS

_HHMM = re.compile(r'^([01]\d|2[0-4]):([0-5]\d)$')


def parse_hhmm(value: str) -> int:
    """Parse "HH:MM" into minutes after midnight; "24:00" is end of day"""
    match = _HHMM.match(value or '')
    if not match:
        raise ValidationError(f"Invalid time '{value}'. Use HH:MM")
    minutes = int(match.group(1)) * 60 + int(match.group(2))
    if minutes > 24 * 60:
        raise ValidationError(f"Invalid time '{value}'")
    return minutes


def validate_timezone(name: str) -> str:
    try:
        pytz.timezone(name)
    except (pytz.UnknownTimeZoneError, AttributeError):
        raise ValidationError(f"Unknown timezone '{name}'")
    return name


def validate_weekly_schedule(schedule: Dict) -> Dict[str, List[Dict[str, str]]]:
    """Check weekday ranges and return them normalized and sorted.

    Every weekday key is present in the result. Within a day, ranges must
    have start < end and must not overlap.
    """
    if not isinstance(schedule, dict):
        raise ValidationError("weekly_schedule must be an object keyed by weekday")

    unknown = set(schedule) - set(WEEKDAYS)
    if unknown:
        raise ValidationError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")

    normalized = {}
    for day in WEEKDAYS:
        ranges = schedule.get(day) or []
        parsed = []
        for entry in ranges:
            try:
                start, end = entry['start'], entry['end']
            except (KeyError, TypeError):
                raise ValidationError(f"Each {day} range needs start and end")
            start_min, end_min = parse_hhmm(start), parse_hhmm(end)
            if start_min >= end_min:
                raise ValidationError(f"{day} range {start}-{end} must start before it ends")
            parsed.append((start_min, end_min, start, end))

        parsed.sort()
        for previous, current in zip(parsed, parsed[1:]):
            if current[0] < previous[1]:
                raise ValidationError(
                    f"{day} ranges {previous[2]}-{previous[3]} and {current[2]}-{current[3]} overlap"
                )
        normalized[day] = [{'start': p[2], 'end': p[3]} for p in parsed]

    return normalized


def validate_time_range(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    if start is None or end is None:
        raise ValidationError("Start and end times are required")
    if start >= end:
        raise ValidationError("Start time must be before end time")
    return start, end


def validate_positive_minutes(value, field: str) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a whole number of minutes")
    if minutes <= 0:
        raise ValidationError(f"{field} must be positive")
    return minutes


def parse_iso_datetime(value: str, field: str = 'datetime') -> datetime:
    """Parse an ISO 8601 instant into a naive UTC datetime.

    Values without an offset are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f"Invalid {field} format. Use ISO 8601")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.utc).replace(tzinfo=None)
    return parsed


def parse_iso_date(value: str, field: str = 'date') -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field} format. Use YYYY-MM-DD")
