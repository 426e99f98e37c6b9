from datetime import date, datetime, timezone

from ..errors import ValidationError


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def iso_utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()


def day_prefix(value: str) -> str:
    """Normalise a ``YYYY-MM-DD`` filter value, rejecting anything else."""
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError as exc:
        raise ValidationError(f"date must be formatted as YYYY-MM-DD, got '{value}'") from exc
