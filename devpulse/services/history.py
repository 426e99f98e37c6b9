"""Read-side queries over the stored file events and test-status reports."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DeserializationError, NotFoundError, StorageError
from ..models import (
    DOCUMENT_FIELDS,
    FileEvent,
    FileEventResponse,
    FilterParameters,
    TestStatus,
    TestStatusResponse,
)
from ..utils.time import day_prefix

# (filter attribute, key inside the testStatus document)
_COUNT_FILTERS = (
    ("total_tests", "total"),
    ("failed", "failed"),
    ("passed", "passed"),
)

# Rows read per round trip while looking for the newest decodable report
_LATEST_BATCH = 50


async def _execute(db: AsyncSession, query, what: str) -> List[Any]:
    try:
        result = await db.execute(query)
    except SQLAlchemyError as exc:
        logger.error(f"Failed to query {what}: {exc}")
        raise StorageError(f"Failed to query {what}") from exc
    return list(result.scalars().all())


def _decode_rows(rows: Iterable[TestStatus]) -> List[TestStatusResponse]:
    """Decode stored rows, dropping any whose documents do not parse."""
    records: List[TestStatusResponse] = []
    for row in rows:
        try:
            records.append(TestStatusResponse.from_row(row))
        except DeserializationError as exc:
            logger.warning(f"Skipping test status row {row.id}: {exc}")
    return records


def _latest_per_user_query(conditions: List[Any]):
    """Rows whose timestamp equals their user's maximum timestamp among rows matching ``conditions``."""
    latest = select(TestStatus.user, func.max(TestStatus.timestamp).label("latest_ts"))
    if conditions:
        latest = latest.where(and_(*conditions))
    latest = latest.group_by(TestStatus.user).subquery()

    query = select(TestStatus).join(
        latest,
        (TestStatus.user == latest.c.user) & (TestStatus.timestamp == latest.c.latest_ts),
    )
    if conditions:
        query = query.where(and_(*conditions))
    # Ties on (user, timestamp) resolve to the highest id
    return query.order_by(TestStatus.user, TestStatus.id.desc())


def _matches_counts(record: TestStatusResponse, filters: FilterParameters) -> bool:
    counts = record.test_status or {}
    for attribute, key in _COUNT_FILTERS:
        expected = getattr(filters, attribute)
        if expected is None:
            continue
        value = counts.get(key)
        if isinstance(value, bool) or not isinstance(value, int) or value != expected:
            return False
    return True


async def list_file_events(db: AsyncSession) -> List[FileEventResponse]:
    rows = await _execute(db, select(FileEvent).order_by(FileEvent.id), "file events")
    return [FileEventResponse.model_validate(row) for row in rows]


async def list_test_status(db: AsyncSession) -> List[TestStatusResponse]:
    query = select(TestStatus).order_by(TestStatus.timestamp.desc(), TestStatus.id.desc())
    return _decode_rows(await _execute(db, query, "test status"))


async def latest_test_status(db: AsyncSession) -> Optional[TestStatusResponse]:
    """Most recent decodable report across all users, or None when there is none."""
    query = select(TestStatus).order_by(TestStatus.timestamp.desc(), TestStatus.id.desc())
    offset = 0
    while True:
        rows = await _execute(db, query.limit(_LATEST_BATCH).offset(offset), "latest test status")
        for row in rows:
            try:
                return TestStatusResponse.from_row(row)
            except DeserializationError as exc:
                logger.warning(f"Skipping test status row {row.id}: {exc}")
        if len(rows) < _LATEST_BATCH:
            return None
        offset += _LATEST_BATCH


async def _latest_decodable_per_user(
    db: AsyncSession,
    conditions: List[Any],
    what: str,
) -> List[TestStatusResponse]:
    """Newest decodable row per user among rows matching ``conditions``.

    The max-timestamp join answers most users in one query. Users whose
    selected rows all fail to decode are re-read newest first until a
    decodable row turns up.
    """
    selected: Dict[str, TestStatusResponse] = {}
    unreadable: Set[int] = set()
    unreadable_users: Set[str] = set()
    for row in await _execute(db, _latest_per_user_query(conditions), what):
        if row.user in selected:
            continue
        try:
            selected[row.user] = TestStatusResponse.from_row(row)
        except DeserializationError as exc:
            logger.warning(f"Skipping test status row {row.id}: {exc}")
            unreadable.add(row.id)
            unreadable_users.add(row.user)

    pending_users = sorted(unreadable_users.difference(selected))
    if pending_users:
        fallback = select(TestStatus).where(
            TestStatus.user.in_(pending_users),
            TestStatus.id.notin_(sorted(unreadable)),
        )
        if conditions:
            fallback = fallback.where(and_(*conditions))
        fallback = fallback.order_by(TestStatus.user, TestStatus.timestamp.desc(), TestStatus.id.desc())
        for row in await _execute(db, fallback, what):
            if row.user in selected:
                continue
            try:
                selected[row.user] = TestStatusResponse.from_row(row)
            except DeserializationError as exc:
                logger.warning(f"Skipping test status row {row.id}: {exc}")

    return [selected[user] for user in sorted(selected)]


async def latest_per_user(db: AsyncSession) -> List[TestStatusResponse]:
    return await _latest_decodable_per_user(db, [], "latest test status per user")


async def filtered_latest_per_user(
    db: AsyncSession,
    filters: FilterParameters,
) -> List[TestStatusResponse]:
    """Latest report per user narrowed by ``filters``.

    Candidates are rows with every document column present and decodable,
    restricted by ``username`` and ``date``; the newest candidate per user is
    selected from those. ``total_tests``, ``failed`` and ``passed`` are then
    matched against the selected rows' ``testStatus``.

    Raises NotFoundError when nothing matches.
    """
    conditions: List[Any] = [getattr(TestStatus, name).isnot(None) for name in DOCUMENT_FIELDS]
    if filters.username:
        conditions.append(TestStatus.user == filters.username)
    if filters.date:
        conditions.append(func.substr(TestStatus.timestamp, 1, 10) == day_prefix(filters.date))

    latest = await _latest_decodable_per_user(db, conditions, "filtered test status")
    records = [record for record in latest if _matches_counts(record, filters)]
    if not records:
        raise NotFoundError(
            "No test results found matching the given filters",
            parameters=filters.model_dump(by_alias=True),
        )
    return records
