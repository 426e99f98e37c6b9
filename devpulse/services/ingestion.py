"""Boundary validation for producer payloads, followed by persistence and fan-out."""

from __future__ import annotations

from typing import Any, Dict

import pydantic
from loguru import logger

from ..errors import ValidationError
from ..events import connection_registry
from ..models import TestStatusSubmission
from ..utils.time import iso_utc_now
from .persistence import append_file_event, append_test_status


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _first_error(exc: pydantic.ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


async def submit_file_event(payload: Dict[str, Any]) -> int:
    """Store a file-save notification, then push the payload unchanged to observers."""
    missing = [key for key in ("fileName", "timestamp") if payload.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

    logger.debug(f"File event received: {payload}")
    event_id = await append_file_event(str(payload["fileName"]), str(payload["timestamp"]))
    connection_registry.dispatch(payload)
    return event_id


def validate_test_status(payload: Dict[str, Any]) -> TestStatusSubmission:
    """Parse a test-status payload and enforce the fields every stored report must carry."""
    try:
        submission = TestStatusSubmission.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid test status payload ({_first_error(exc)})") from exc

    if not submission.user or not submission.user.strip():
        raise ValidationError("Missing required field: user")
    if not submission.project_info:
        raise ValidationError("Missing required field: projectInfo")
    if not submission.test_status:
        raise ValidationError("Missing required field: testStatus")
    if not _is_positive_number(submission.test_status.get("total")):
        raise ValidationError("testStatus.total must be a number greater than 0")

    if not submission.timestamp:
        submission.timestamp = iso_utc_now()
    return submission


async def submit_test_status(payload: Dict[str, Any]) -> int:
    """Validate and store a test-status report. Reports are not broadcast to observers."""
    submission = validate_test_status(payload)
    record_id = await append_test_status(submission)
    logger.info(f"Stored test status {record_id} for {submission.user}")
    return record_id
