from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta

from roster_monitor.errors import ValidationError
from roster_monitor.settings import get_settings

SHIFT_1 = "SHIFT_1"
SHIFT_2 = "SHIFT_2"
REMINDER_DISPATCH = "REMINDER_DISPATCH"


@dataclass(frozen=True, slots=True)
class ScheduleWindow:
    name: str
    start: time
    end: time

    @property
    def crosses_midnight(self) -> bool:
        return self.end <= self.start

    def contains(self, local_time: time) -> bool:
        if self.crosses_midnight:
            return local_time >= self.start or local_time < self.end
        return self.start <= local_time < self.end


def parse_hhmm(value: str) -> time:
    try:
        hour_text, minute_text = value.strip().split(":", 1)
        return time(hour=int(hour_text), minute=int(minute_text))
    except ValueError:
        raise ValidationError(f'Invalid time of day "{value}" (expected HH:MM)') from None


def _dispatch_window() -> ScheduleWindow:
    start = parse_hhmm(get_settings().reminder_send_time_local)
    end = (datetime.combine(datetime.min, start) + timedelta(hours=1)).time()
    return ScheduleWindow(name=REMINDER_DISPATCH, start=start, end=end)


def schedule_windows() -> dict[str, ScheduleWindow]:
    return {
        SHIFT_1: ScheduleWindow(name=SHIFT_1, start=time(6, 0), end=time(18, 0)),
        SHIFT_2: ScheduleWindow(name=SHIFT_2, start=time(18, 0), end=time(6, 0)),
        REMINDER_DISPATCH: _dispatch_window(),
    }


def get_window(name: str) -> ScheduleWindow:
    window = schedule_windows().get(name)
    if window is None:
        raise ValidationError(f"Unknown schedule window: {name}")
    return window


def window_contains(name: str, local_time: time) -> bool:
    return get_window(name).contains(local_time)


def resolve_shift(local_time: time) -> str:
    return SHIFT_1 if window_contains(SHIFT_1, local_time) else SHIFT_2
