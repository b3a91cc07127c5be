# safety_tracker/validation.py
import re
from datetime import datetime

from .errors import ValidationError

MAX_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 5000

# OSHA caps day counts at 180 per case.
MAX_OSHA_DAYS = 180

MIN_YEAR = 1970
MAX_YEAR = 2100

MAX_EMPLOYEES = 1_000_000
MAX_HOURS_WORKED = 2_100_000_000

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d-%m-%Y")


def parse_date(value: str):
    if not value:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def validate_date(value: str, field_name: str) -> str:
    """Validate a strict YYYY-MM-DD date and return it unchanged."""
    if not isinstance(value, str) or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value):
        raise ValidationError(f"{field_name} must be in YYYY-MM-DD format (got: {value})")
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field_name} is not a valid calendar date (got: {value})")
    validate_year(parsed.year)
    return value


def validate_year(year: int) -> int:
    if year < MIN_YEAR or year > MAX_YEAR:
        raise ValidationError(
            f"Year must be between {MIN_YEAR} and {MAX_YEAR} (got: {year})"
        )
    return year


def validate_days_count(days: int, field_name: str) -> int:
    if days < 0:
        raise ValidationError(f"{field_name} cannot be negative (got: {days})")
    if days > MAX_OSHA_DAYS:
        raise ValidationError(
            f"{field_name} exceeds OSHA maximum of {MAX_OSHA_DAYS} days (got: {days})"
        )
    return days


def validate_not_empty(value, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} cannot be empty")
    return value


def validate_length(value, max_length: int, field_name: str):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field_name} must be text (got: {value!r})")
    if value is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name} exceeds maximum length of {max_length} characters "
            f"(got: {len(value)} characters)"
        )
    return value


def validate_choice(value: str, choices, field_name: str) -> str:
    if value not in choices:
        raise ValidationError(
            f"{field_name} must be one of: {', '.join(choices)} (got: {value})"
        )
    return value


def validate_employee_count(count: int) -> int:
    if count < 0:
        raise ValidationError(f"Employee count cannot be negative (got: {count})")
    if count > MAX_EMPLOYEES:
        raise ValidationError(f"Employee count seems unrealistic (got: {count})")
    return count


def validate_hours_worked(hours: int) -> int:
    if hours < 0:
        raise ValidationError(f"Total hours worked cannot be negative (got: {hours})")
    if hours > MAX_HOURS_WORKED:
        raise ValidationError(f"Total hours worked seems unrealistic (got: {hours})")
    return hours


def to_bool(value):
    """Interpret yes/no style cell values; returns None when unrecognised."""
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in ("yes", "true", "1", "y", "x"):
        return True
    if v in ("no", "false", "0", "n", ""):
        return False
    return None


def validate_int(value, field_name: str) -> int:
    """Accept ints and whole-number strings; bools and everything else are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a whole number (got: {value})")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    raise ValidationError(f"{field_name} must be a whole number (got: {value})")


def validate_flag(value, field_name: str) -> bool:
    flag = to_bool(value) if isinstance(value, (bool, str)) else None
    if flag is None:
        raise ValidationError(f"{field_name} must be true or false (got: {value})")
    return flag
