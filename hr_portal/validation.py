"""
Structural validation of leave submissions.

Runs before anything touches the store. Pure: the same candidate always
yields the same result (``today`` is only consulted when the optional
past-date check is switched on).
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from dateutil import parser
from dateutil.parser import ParserError

from hr_portal.errors import ValidationError, ValidationErrorCode
from hr_portal.models import LeaveSubmission, LeaveType

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10

# The presentation layer posts camelCase; internal callers use snake_case.
_FIELD_ALIASES = {
    "leave_type": ("leave_type", "leaveType"),
    "start_date": ("start_date", "startDate"),
    "end_date": ("end_date", "endDate"),
    "reason": ("reason",),
}

_FIELD_LABELS = {
    "leave_type": "leave type",
    "start_date": "start date",
    "end_date": "end date",
}


def _field(candidate: Mapping[str, Any], name: str) -> Any:
    for key in _FIELD_ALIASES[name]:
        if candidate.get(key) not in (None, ""):
            return candidate[key]
    return None


def _parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    try:
        return parser.parse(value).date()
    except (ParserError, ValueError, OverflowError):
        return None


def _parse_leave_type(value: Any) -> LeaveType | None:
    if isinstance(value, LeaveType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return LeaveType(value.strip().lower())
    except ValueError:
        return None


def collect_validation_errors(
    candidate: Mapping[str, Any],
    *,
    reject_past_start_dates: bool = False,
    today: date | None = None,
) -> list[ValidationError]:
    """
    Check a candidate submission and return every failure, in check order.

    Order: leave type, start date, end date, date range, reason. The range
    check only runs when both dates parsed.
    """
    errors: list[ValidationError] = []

    if _parse_leave_type(_field(candidate, "leave_type")) is None:
        errors.append(
            ValidationError(
                ValidationErrorCode.MISSING_FIELD,
                "leave_type",
                "Please select a leave type",
            )
        )

    dates: dict[str, date | None] = {}
    for name in ("start_date", "end_date"):
        dates[name] = _parse_date(_field(candidate, name))
        if dates[name] is None:
            errors.append(
                ValidationError(
                    ValidationErrorCode.MISSING_FIELD,
                    name,
                    f"Please select a {_FIELD_LABELS[name]}",
                )
            )

    start, end = dates["start_date"], dates["end_date"]
    if start is not None and end is not None:
        if end < start:
            errors.append(
                ValidationError(
                    ValidationErrorCode.INVALID_RANGE,
                    "end_date",
                    "End date must be after or equal to start date",
                )
            )
        if reject_past_start_dates and start < (today or date.today()):
            errors.append(
                ValidationError(
                    ValidationErrorCode.INVALID_RANGE,
                    "start_date",
                    "Start date cannot be in the past",
                )
            )

    reason = _field(candidate, "reason")
    if not isinstance(reason, str) or len(reason.strip()) < MIN_REASON_LENGTH:
        errors.append(
            ValidationError(
                ValidationErrorCode.TOO_SHORT,
                "reason",
                f"Reason must be at least {MIN_REASON_LENGTH} characters",
            )
        )

    return errors


def validate_leave_request(
    candidate: Mapping[str, Any],
    *,
    reject_past_start_dates: bool = False,
    today: date | None = None,
) -> LeaveSubmission:
    """
    Validate a candidate and build the value object that gets persisted.

    Raises:
        ValidationError: The first failed check.
    """
    errors = collect_validation_errors(
        candidate, reject_past_start_dates=reject_past_start_dates, today=today
    )
    if errors:
        logger.info("Leave submission rejected: field=%s code=%s", errors[0].field, errors[0].code.value)
        raise errors[0]

    return LeaveSubmission(
        leave_type=_parse_leave_type(_field(candidate, "leave_type")),
        start_date=_parse_date(_field(candidate, "start_date")),
        end_date=_parse_date(_field(candidate, "end_date")),
        reason=_field(candidate, "reason").strip(),
    )
