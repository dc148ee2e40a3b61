from datetime import datetime, timedelta


class Clock:
    """Source of "now" for every time-dependent decision.

    Instants are naive UTC datetimes, matching what the models store.
    """

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.utcnow()


class FixedClock(Clock):
    """Clock pinned to a settable instant"""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime):
        self.current = current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current
