from datetime import datetime, timedelta, timezone

MIN_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    """
    Current UTC time as a naive datetime (the way it's stored in the DB)
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MonotonicClock:
    """
    Clock that never returns the same or an earlier value twice.
    Used to assign `created_at` to messages so that history has a strict order.
    """

    def __init__(self):
        self._last: datetime | None = None

    def now(self) -> datetime:
        now = utc_now()
        if self._last is not None and now <= self._last:
            now = self._last + MIN_TICK
        self._last = now
        return now


message_clock = MonotonicClock()
