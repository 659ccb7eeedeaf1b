"""Cron evaluation.

Expressions are evaluated against the wall clock of the task's IANA timezone
and returned as aware UTC instants. Accepted forms are standard 5-field cron,
6-field cron with a leading seconds field, and ``@hourly``-style aliases.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadDateError, CroniterError, croniter

from fleetsched.scheduling.errors import InvalidScheduleError, InvalidTimezoneError

logger = logging.getLogger(__name__)

# Upper bound on wall-clock candidates examined per lookup
MAX_CANDIDATES = 1000


class CronEngine:
    """Parses cron expressions and computes fire times.

    Stateless; a single instance is shared by the registry and the service.
    """

    def validate(self, expression: str) -> bool:
        """Return True if the expression parses. Never-matching schedules are valid."""
        try:
            self._iterator(expression, datetime(2000, 1, 1))
        except InvalidScheduleError:
            return False
        return True

    def check(self, expression: str, timezone: str) -> None:
        """Raise if either the expression or the timezone is unusable."""
        self._iterator(expression, datetime(2000, 1, 1))
        self._zone(timezone)

    def next_fire_time(
        self, expression: str, timezone: str, after: datetime
    ) -> datetime | None:
        """Earliest matching instant strictly after ``after``.

        Interval schedules (a wildcard or step in the seconds, minutes or
        hours field, or ``@hourly``) fire in both passes through a repeated
        fall-back hour. Fixed-time schedules fire there once.

        Returns None when the schedule can never match again.

        Raises:
            InvalidScheduleError: The expression does not parse.
            InvalidTimezoneError: The timezone is unknown.
        """
        zone = self._zone(timezone)
        after_utc = _require_aware(after).astimezone(UTC)
        fire = self._next_by_wall(expression, zone, after_utc)
        if _fires_every_pass(expression):
            repeat = self._next_in_second_pass(expression, zone, after_utc)
            if repeat is not None and (fire is None or repeat < fire):
                fire = repeat
        return fire

    def preview(
        self,
        expression: str,
        timezone: str,
        after: datetime,
        count: int = 5,
    ) -> list[datetime]:
        """Next ``count`` fire instants after ``after`` (fewer if the schedule ends)."""
        times: list[datetime] = []
        cursor = after
        for _ in range(count):
            fire = self.next_fire_time(expression, timezone, cursor)
            if fire is None:
                break
            times.append(fire)
            cursor = fire
        return times

    def _next_by_wall(
        self, expression: str, zone: ZoneInfo, after: datetime
    ) -> datetime | None:
        local_after = after.astimezone(zone).replace(tzinfo=None)
        itr = self._iterator(expression, local_after)

        try:
            for _ in range(MAX_CANDIDATES):
                wall = itr.get_next(datetime)
                resolved = _resolve(wall, zone, after)
                if resolved is None:
                    continue
                if not _exists(wall, zone):
                    resolved = _settle_gap(itr, resolved, zone, after)
                return resolved
        except CroniterBadDateError:
            return None

        logger.warning(
            "cron_candidates_exhausted",
            extra={"cron.expression": expression, "cron.timezone": zone.key},
        )
        return None

    def _next_in_second_pass(
        self, expression: str, zone: ZoneInfo, after: datetime
    ) -> datetime | None:
        """First match in the repeated hour when ``after`` is in its first pass.

        Walking forward from the wall time of ``after`` never revisits the
        repeated wall times, so their second occurrences are checked here.
        """
        local = after.astimezone(zone)
        wall = local.replace(tzinfo=None)
        if local.fold or not _ambiguous(wall, zone):
            return None

        start = _repeated_start(wall, zone)
        itr = self._iterator(expression, start - timedelta(seconds=1))
        try:
            candidate = itr.get_next(datetime)
        except CroniterBadDateError:
            return None
        if not _ambiguous(candidate, zone):
            return None
        instant = candidate.replace(tzinfo=zone, fold=1).astimezone(UTC)
        return instant if instant > after else None

    def _iterator(self, expression: str, start: datetime) -> croniter:
        expr = (expression or "").strip()
        if not expr:
            raise InvalidScheduleError(expression, "empty expression")

        fields = expr.split()
        if expr.startswith("@"):
            if len(fields) != 1:
                raise InvalidScheduleError(expression, "unexpected fields after alias")
            seconds_first = False
        elif len(fields) in (5, 6):
            seconds_first = len(fields) == 6
        else:
            raise InvalidScheduleError(
                expression, f"expected 5 or 6 fields, got {len(fields)}"
            )

        try:
            return croniter(expr, start, second_at_beginning=seconds_first)
        except (CroniterError, ValueError, KeyError) as e:
            raise InvalidScheduleError(expression, str(e)) from e

    def _zone(self, timezone: str) -> ZoneInfo:
        if not timezone:
            raise InvalidTimezoneError(timezone)
        try:
            return ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise InvalidTimezoneError(timezone) from e


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    return value


def _resolve(wall: datetime, zone: ZoneInfo, after: datetime) -> datetime | None:
    """Map a naive wall time to the first real instant after ``after``.

    fold=0 moves nonexistent times forward by the gap; fold=1 selects the
    second pass through a repeated hour.
    """
    for fold in (0, 1):
        instant = wall.replace(tzinfo=zone, fold=fold).astimezone(UTC)
        if instant > after:
            return instant
    return None


def _exists(wall: datetime, zone: ZoneInfo) -> bool:
    instant = wall.replace(tzinfo=zone).astimezone(UTC)
    return instant.astimezone(zone).replace(tzinfo=None) == wall


def _settle_gap(
    itr: croniter, resolved: datetime, zone: ZoneInfo, after: datetime
) -> datetime:
    """Prefer a real wall time that lands before a shifted gap time."""
    shifted_wall = resolved.astimezone(zone).replace(tzinfo=None)
    best = resolved
    for _ in range(MAX_CANDIDATES):
        try:
            wall = itr.get_next(datetime)
        except CroniterBadDateError:
            break
        if wall >= shifted_wall:
            break
        candidate = _resolve(wall, zone, after)
        if candidate is not None and candidate < best:
            best = candidate
    return best


def _ambiguous(wall: datetime, zone: ZoneInfo) -> bool:
    """True for wall times that occur twice (fall-back)."""
    first = wall.replace(tzinfo=zone, fold=0).astimezone(UTC)
    second = wall.replace(tzinfo=zone, fold=1).astimezone(UTC)
    return second > first


def _repeated_start(wall: datetime, zone: ZoneInfo) -> datetime:
    """Earliest wall minute of the repeated period containing ``wall``."""
    start = wall.replace(second=0, microsecond=0)
    for _ in range(MAX_CANDIDATES):
        previous = start - timedelta(minutes=1)
        if not _ambiguous(previous, zone):
            break
        start = previous
    return start


def _fires_every_pass(expression: str) -> bool:
    fields = expression.strip().split()
    if len(fields) == 1:
        return fields[0].lower() == "@hourly"
    time_fields = fields[:3] if len(fields) == 6 else fields[:2]
    return any("*" in field or "/" in field for field in time_fields)
