"""Calendar window calculations.

Pure functions for week/month windows, the month grid, window titles and
12-hour clock parsing. No shared state.
"""
import re
from collections import Counter
from datetime import date, timedelta

from .types import Direction, MonthDay, TimeRange, ViewMode, Window

WORKWEEK_DAYS = 5
GRID_CELLS = 42

MONTH_NAMES = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

_CLOCK = re.compile(
    r"(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?:(?P<period>[ap])\.?\s*m\.?)?",
    re.IGNORECASE,
)
_RANGE_SEPARATOR = re.compile(r"\s+a\s+(?=\d)", re.IGNORECASE)


# ============== Clock Parsing ==============

def parse_clock(text: str) -> int | None:
    """Parse '8:30 a.m.' (or a 24-hour '14:30') into minutes since midnight."""
    match = _CLOCK.search(text or "")
    if not match:
        return None

    hours = int(match.group("hour"))
    minutes = int(match.group("minute"))
    period = (match.group("period") or "").lower()
    if minutes >= 60:
        return None

    if period:
        if not 1 <= hours <= 12:
            return None
        if period == "p" and hours != 12:
            hours += 12
        elif period == "a" and hours == 12:
            hours = 0
    elif hours >= 24:
        return None

    return hours * 60 + minutes


def parse_time_range(text: str | None) -> TimeRange | None:
    """Parse '<H>:<MM> a.m. a <H>:<MM> p.m.' or a single endpoint.

    Returns None when absent or unparseable, or when the end precedes the start.
    """
    if not text or not text.strip():
        return None

    parts = _RANGE_SEPARATOR.split(text.strip(), maxsplit=1)
    start = parse_clock(parts[0])
    if start is None:
        return None
    if len(parts) == 1:
        return TimeRange(start=start)

    end = parse_clock(parts[1])
    if end is None or end < start:
        return None
    return TimeRange(start=start, end=end)


def format_clock(minutes: int) -> str:
    """Format minutes since midnight as '8:00 a.m.'."""
    hours, mins = divmod(minutes, 60)
    period = "a.m." if hours < 12 else "p.m."
    display_hour = hours % 12 or 12
    return f"{display_hour}:{mins:02d} {period}"


# ============== Windows ==============

def iter_dates(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def week_window(anchor: date) -> Window:
    """Monday-to-Friday window of the ISO week containing ``anchor``.

    Weekend anchors resolve to the workweek of the same ISO week.
    """
    monday = anchor - timedelta(days=anchor.weekday())
    return Window.from_dates(monday, monday + timedelta(days=WORKWEEK_DAYS - 1))


def navigate_week(window: Window, direction: Direction | str) -> Window:
    """Shift a window by exactly seven days."""
    delta = timedelta(days=7 * Direction(direction).step)
    return Window.from_dates(window.start + delta, window.end + delta)


def resolve_month_for_week(window: Window) -> tuple[int, int]:
    """Month holding the majority of the window's days; ties go to the start month."""
    counts = Counter((d.year, d.month) for d in iter_dates(window.start, window.end))
    start_month = (window.start.year, window.start.month)
    best = max(counts.values())
    if counts[start_month] == best:
        return start_month
    for month_key, count in counts.items():
        if count == best:
            return month_key
    return start_month


def _shift_month(year: int, month: int, step: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + step
    return index // 12, index % 12 + 1


def first_week_of_month(year: int, month: int) -> Window:
    """First workweek window that resolves to the given month."""
    for day in range(1, 8):
        candidate = week_window(date(year, month, day))
        if resolve_month_for_week(candidate) == (year, month):
            return candidate
    return week_window(date(year, month, 1))


def navigate_month(window: Window, direction: Direction | str) -> Window:
    """Move to the first workweek of the adjacent month.

    The window stays Monday-to-Friday aligned.
    """
    year, month = resolve_month_for_week(window)
    target_year, target_month = _shift_month(year, month, Direction(direction).step)
    return first_week_of_month(target_year, target_month)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    next_year, next_month = _shift_month(year, month, 1)
    return first, date(next_year, next_month, 1) - timedelta(days=1)


def month_grid(year: int, month: int, today: date | None = None) -> list[MonthDay]:
    """6x7 Monday-first grid covering the month plus adjacent-month padding."""
    today = today or date.today()
    first, _ = month_bounds(year, month)
    grid_start = first - timedelta(days=first.weekday())

    cells = []
    for offset in range(GRID_CELLS):
        day = grid_start + timedelta(days=offset)
        cells.append(MonthDay(
            date=day.isoformat(),
            day_number=day.day,
            is_current_month=(day.year, day.month) == (year, month),
            is_weekend=day.weekday() >= 5,
            is_today=day == today,
        ))
    return cells


def window_dates(window: Window, view_mode: ViewMode | str = ViewMode.WEEKLY) -> list[str]:
    """ISO dates in scope for the window under the given view mode."""
    if ViewMode(view_mode) is ViewMode.MONTHLY:
        start, end = month_bounds(*resolve_month_for_week(window))
    else:
        start, end = window.start, window.end
    return [d.isoformat() for d in iter_dates(start, end)]


def window_key(window: Window, view_mode: ViewMode | str = ViewMode.WEEKLY) -> str:
    """Key used to look up a window's display title."""
    if ViewMode(view_mode) is ViewMode.MONTHLY:
        year, month = resolve_month_for_week(window)
        return f"{year:04d}-{month:02d}"
    return f"{window.start_date}_{window.end_date}"


# ============== Display ==============

def format_date_display(value: str | date) -> str:
    """'2024-06-24' -> '24 de junio de 2024'."""
    day = date.fromisoformat(value) if isinstance(value, str) else value
    return f"{day.day} de {MONTH_NAMES[day.month - 1]} de {day.year}"


def default_window_title(window: Window, view_mode: ViewMode | str = ViewMode.WEEKLY) -> str:
    if ViewMode(view_mode) is ViewMode.MONTHLY:
        year, month = resolve_month_for_week(window)
        return f"{MONTH_NAMES[month - 1].capitalize()} {year}"

    start, end = window.start, window.end
    if start.year != end.year:
        return f"Semana del {format_date_display(start)} al {format_date_display(end)}"
    if start.month != end.month:
        return (
            f"Semana del {start.day} de {MONTH_NAMES[start.month - 1]} "
            f"al {format_date_display(end)}"
        )
    return f"Semana del {start.day} al {format_date_display(end)}"
