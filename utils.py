from datetime import date, datetime, time, timezone
from decimal import Decimal


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_departure(dep):
    """Return an ISO string for a date/time/datetime picked in a form."""
    if isinstance(dep, datetime):
        return dep.isoformat(timespec="minutes")
    if isinstance(dep, time):
        return dep.strftime("%H:%M:%S")
    if isinstance(dep, date):
        return dep.isoformat()
    if isinstance(dep, str):
        try:
            return datetime.fromisoformat(dep.strip()).isoformat(timespec="minutes")
        except ValueError:
            return dep.strip()
    return str(dep)


def combine_departure(day: date, at: time) -> str:
    return format_departure(datetime.combine(day, at))


def format_money(amount) -> str:
    return f"${Decimal(amount):,.2f}"


def clean_points(points) -> list:
    """Drop blank waypoints and surrounding whitespace."""
    return [p.strip() for p in (points or []) if p and p.strip()]
