from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError
from loguru import logger

from ..database import AsyncSessionLocal
from ..errors import StorageError
from ..models import FileEvent, TestStatus, TestStatusSubmission


async def append_file_event(file_name: str, timestamp: str) -> int:
    """Persist a file-save event and return its id."""
    event = FileEvent(file_name=file_name, timestamp=timestamp)
    try:
        async with AsyncSessionLocal() as session:
            session.add(event)
            await session.commit()
            return event.id
    except SQLAlchemyError as exc:
        logger.error(f"Failed to store file event for {file_name}: {exc}")
        raise StorageError("Failed to store file event") from exc


async def append_test_status(submission: TestStatusSubmission) -> int:
    """Persist one test-status report. Documents are serialized by the column type."""
    record = TestStatus(
        user=submission.user,
        timestamp=submission.timestamp,
        test_status=submission.test_status,
        project_info=submission.project_info,
        git_info=submission.git_info,
        test_runner_info=submission.test_runner_info,
        environment=submission.environment,
        execution=submission.execution,
    )
    try:
        async with AsyncSessionLocal() as session:
            session.add(record)
            await session.commit()
            return record.id
    except SQLAlchemyError as exc:
        logger.error(f"Failed to store test status for {submission.user}: {exc}")
        raise StorageError("Failed to store test status") from exc
