import pytest

from devpulse import models
from devpulse.database import AsyncSessionLocal
from devpulse.errors import NotFoundError, StorageError, ValidationError
from devpulse.models import FilterParameters
from devpulse.services import history
from devpulse.services.ingestion import validate_test_status
from devpulse.services.persistence import append_file_event, append_test_status


async def _store(payload):
    return await append_test_status(validate_test_status(payload))


async def _insert_raw(**columns):
    async with AsyncSessionLocal() as session:
        row = models.TestStatus(**columns)
        session.add(row)
        await session.commit()
        return row.id


@pytest.mark.asyncio
async def test_file_events_listed_in_insertion_order():
    first = await append_file_event("a.ts", "2024-01-01T00:00:00Z")
    second = await append_file_event("b.ts", "not-a-time")

    assert second > first

    async with AsyncSessionLocal() as session:
        events = await history.list_file_events(session)
        again = await history.list_file_events(session)

    assert [(e.id, e.file_name, e.timestamp) for e in events] == [
        (first, "a.ts", "2024-01-01T00:00:00Z"),
        (second, "b.ts", "not-a-time"),
    ]
    assert again == events


@pytest.mark.asyncio
async def test_documents_round_trip(report):
    payload = report(projectInfo={"name": "webapp", "tags": ["ui", "e2e"], "meta": {"depth": {"ok": True}}})
    record_id = await _store(payload)

    async with AsyncSessionLocal() as session:
        records = await history.list_test_status(session)

    assert len(records) == 1
    record = records[0]
    assert record.id == record_id
    assert record.project_info == payload["projectInfo"]
    assert record.test_status == payload["testStatus"]
    assert record.execution == payload["execution"]


@pytest.mark.asyncio
async def test_duplicate_submissions_are_all_kept(report):
    await _store(report())
    await _store(report())

    async with AsyncSessionLocal() as session:
        records = await history.list_test_status(session)

    assert len(records) == 2
    assert records[0].id > records[1].id


@pytest.mark.asyncio
async def test_latest_per_user_selects_max_timestamp(report):
    await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))
    newest = await _store(report(user="alice", timestamp="2024-01-02T09:00:00Z"))
    await _store(report(user="alice", timestamp="2023-12-31T09:00:00Z"))
    bob = await _store(report(user="bob", timestamp="2024-01-01T08:00:00Z"))

    async with AsyncSessionLocal() as session:
        latest = await history.latest_per_user(session)

    assert [(r.user, r.id) for r in latest] == [("alice", newest), ("bob", bob)]


@pytest.mark.asyncio
async def test_latest_per_user_tie_resolves_to_highest_id(report):
    await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))
    later_insert = await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))

    async with AsyncSessionLocal() as session:
        latest = await history.latest_per_user(session)

    assert [r.id for r in latest] == [later_insert]


@pytest.mark.asyncio
async def test_malformed_rows_are_skipped(report):
    good = await _store(report(timestamp="2024-01-01T09:00:00Z"))
    await _insert_raw(user="alice", timestamp="2024-01-05T09:00:00Z", test_status="{not json", project_info='{"name": "x"}')
    await _insert_raw(user="carol", timestamp="2024-01-06T09:00:00Z", test_status="[1, 2]", project_info='{"name": "x"}')

    async with AsyncSessionLocal() as session:
        listed = await history.list_test_status(session)
        latest = await history.latest_test_status(session)

    assert [r.id for r in listed] == [good]
    assert latest.id == good


def _complete_raw_row(user, timestamp, test_status):
    return dict(
        user=user,
        timestamp=timestamp,
        test_status=test_status,
        project_info='{"name": "webapp"}',
        git_info='{"branch": "main"}',
        test_runner_info='{"runner": "jest"}',
        environment='{"os": "linux"}',
        execution='{"durationMs": 10}',
    )


@pytest.mark.asyncio
async def test_malformed_newest_row_falls_back_to_older_row(report):
    good = await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))
    bob = await _store(report(user="bob", timestamp="2024-01-03T09:00:00Z"))
    await _insert_raw(**_complete_raw_row("alice", "2024-01-02T09:00:00Z", "{broken"))

    async with AsyncSessionLocal() as session:
        latest = await history.latest_per_user(session)
        filtered = await history.filtered_latest_per_user(session, FilterParameters(username="alice"))
        everyone = await history.filtered_latest_per_user(session, FilterParameters())

    assert [r.id for r in latest] == [good, bob]
    assert [r.id for r in filtered] == [good]
    assert [r.id for r in everyone] == [good, bob]


@pytest.mark.asyncio
async def test_user_with_only_malformed_rows_is_omitted(report):
    bob = await _store(report(user="bob"))
    await _insert_raw(**_complete_raw_row("alice", "2024-01-02T09:00:00Z", "{broken"))
    await _insert_raw(**_complete_raw_row("alice", "2024-01-01T09:00:00Z", "[1, 2]"))

    async with AsyncSessionLocal() as session:
        latest = await history.latest_per_user(session)
        with pytest.raises(NotFoundError):
            await history.filtered_latest_per_user(session, FilterParameters(username="alice"))

    assert [r.id for r in latest] == [bob]


@pytest.mark.asyncio
async def test_latest_test_status_reads_past_a_batch_of_malformed_rows(report, monkeypatch):
    monkeypatch.setattr(history, "_LATEST_BATCH", 2)
    good = await _store(report(timestamp="2024-01-01T09:00:00Z"))
    for day in range(2, 7):
        await _insert_raw(user="alice", timestamp=f"2024-01-0{day}T09:00:00Z", test_status="{broken")

    async with AsyncSessionLocal() as session:
        latest = await history.latest_test_status(session)

    assert latest.id == good


@pytest.mark.asyncio
async def test_latest_test_status_is_none_when_every_row_is_malformed(monkeypatch):
    monkeypatch.setattr(history, "_LATEST_BATCH", 2)
    for day in range(1, 5):
        await _insert_raw(user="alice", timestamp=f"2024-01-0{day}T09:00:00Z", test_status="{broken")

    async with AsyncSessionLocal() as session:
        assert await history.latest_test_status(session) is None


@pytest.mark.asyncio
async def test_latest_test_status_is_none_when_empty():
    async with AsyncSessionLocal() as session:
        assert await history.latest_test_status(session) is None


@pytest.mark.asyncio
async def test_latest_test_status_spans_all_users(report):
    await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))
    newest = await _store(report(user="bob", timestamp="2024-01-03T09:00:00Z"))

    async with AsyncSessionLocal() as session:
        latest = await history.latest_test_status(session)

    assert latest.id == newest
    assert latest.user == "bob"


@pytest.mark.asyncio
async def test_filter_date_applies_before_latest_selection(report):
    older = await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z"))
    await _store(report(user="alice", timestamp="2024-01-02T09:00:00Z"))

    async with AsyncSessionLocal() as session:
        results = await history.filtered_latest_per_user(session, FilterParameters(date="2024-01-01"))

    assert [r.id for r in results] == [older]


@pytest.mark.asyncio
async def test_filter_counts_apply_after_latest_selection(report):
    await _store(report(user="alice", timestamp="2024-01-01T09:00:00Z", passed=10, failed=0))
    await _store(report(user="alice", timestamp="2024-01-02T09:00:00Z", passed=8, failed=2))

    async with AsyncSessionLocal() as session:
        with pytest.raises(NotFoundError):
            await history.filtered_latest_per_user(session, FilterParameters(failed=0))
        results = await history.filtered_latest_per_user(session, FilterParameters(failed=2, total_tests=10))

    assert [(r.user, r.test_status["failed"]) for r in results] == [("alice", 2)]


@pytest.mark.asyncio
async def test_filter_ignores_rows_missing_documents(report):
    complete = await _store(report(user="bob", timestamp="2024-01-01T09:00:00Z"))
    await _store(report(user="bob", timestamp="2024-01-02T09:00:00Z", gitInfo=None))

    async with AsyncSessionLocal() as session:
        results = await history.filtered_latest_per_user(session, FilterParameters(username="bob"))
        unfiltered = await history.latest_per_user(session)

    assert [r.id for r in results] == [complete]
    assert unfiltered[0].git_info is None


@pytest.mark.asyncio
async def test_filter_without_matches_reports_parameters(report):
    await _store(report(user="alice"))

    async with AsyncSessionLocal() as session:
        with pytest.raises(NotFoundError) as excinfo:
            await history.filtered_latest_per_user(session, FilterParameters(username="bob", passed=3))

    assert excinfo.value.parameters == {
        "username": "bob",
        "date": None,
        "totalTests": None,
        "failed": None,
        "passed": 3,
    }


@pytest.mark.asyncio
async def test_filter_rejects_malformed_date():
    async with AsyncSessionLocal() as session:
        with pytest.raises(ValidationError):
            await history.filtered_latest_per_user(session, FilterParameters(date="01/02/2024"))


@pytest.mark.asyncio
async def test_storage_failures_raise_storage_error(drop_tables):
    with pytest.raises(StorageError):
        await append_file_event("a.ts", "2024-01-01T00:00:00Z")

    async with AsyncSessionLocal() as session:
        with pytest.raises(StorageError):
            await history.list_file_events(session)
