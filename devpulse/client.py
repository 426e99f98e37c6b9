"""Async client for producers and scripts talking to the DevPulse API."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .config import settings
from .utils.time import iso_utc_now


@dataclass
class FileEventInfo:
    """A stored file-save event."""

    id: int
    file_name: str
    timestamp: str


@dataclass
class TestReport:
    """A stored test-status report with its documents decoded."""

    id: int
    user: str
    timestamp: str
    test_status: Dict[str, Any]
    project_info: Dict[str, Any]
    git_info: Optional[Dict[str, Any]]
    test_runner_info: Optional[Dict[str, Any]]
    environment: Optional[Dict[str, Any]]
    execution: Optional[Dict[str, Any]]

    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "TestReport":
        return cls(
            id=item["id"],
            user=item["user"],
            timestamp=item["timestamp"],
            test_status=item.get("testStatus") or {},
            project_info=item.get("projectInfo") or {},
            git_info=item.get("gitInfo"),
            test_runner_info=item.get("testRunnerInfo"),
            environment=item.get("environment"),
            execution=item.get("execution"),
        )


class DevPulseClient:
    """Thin convenience wrapper around the DevPulse REST API."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.client_base_url,
            timeout=timeout or settings.client_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def report_file_saved(self, file_name: str, timestamp: Optional[str] = None) -> None:
        response = await self._client.post(
            "/update",
            json={"fileName": file_name, "timestamp": timestamp or iso_utc_now()},
        )
        response.raise_for_status()

    async def report_test_status(
        self,
        user: str,
        test_status: Dict[str, Any],
        project_info: Dict[str, Any],
        *,
        timestamp: Optional[str] = None,
        git_info: Optional[Dict[str, Any]] = None,
        test_runner_info: Optional[Dict[str, Any]] = None,
        environment: Optional[Dict[str, Any]] = None,
        execution: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Submit a test run report and return the id the server assigned."""
        payload: Dict[str, Any] = {
            "user": user,
            "timestamp": timestamp or iso_utc_now(),
            "testStatus": test_status,
            "projectInfo": project_info,
            "gitInfo": git_info,
            "testRunnerInfo": test_runner_info,
            "environment": environment,
            "execution": execution,
        }
        response = await self._client.post("/test-status", json=payload)
        response.raise_for_status()
        return int(response.json()["id"])

    async def events(self) -> List[FileEventInfo]:
        response = await self._client.get("/events")
        response.raise_for_status()
        return [
            FileEventInfo(id=item["id"], file_name=item["fileName"], timestamp=item["timestamp"])
            for item in response.json()
        ]

    async def test_reports(self) -> List[TestReport]:
        response = await self._client.get("/test-status")
        response.raise_for_status()
        return [TestReport.from_payload(item) for item in response.json()]

    async def latest_report(self) -> Optional[TestReport]:
        response = await self._client.get("/latest-test-results")
        response.raise_for_status()
        if response.status_code == 204:
            return None
        return TestReport.from_payload(response.json())

    async def latest_by_user(self) -> List[TestReport]:
        response = await self._client.get("/latest-test-results-by-user")
        response.raise_for_status()
        return [TestReport.from_payload(item) for item in response.json()]

    async def filtered_reports(
        self,
        *,
        username: Optional[str] = None,
        date: Optional[str] = None,
        total_tests: Optional[int] = None,
        failed: Optional[int] = None,
        passed: Optional[int] = None,
    ) -> List[TestReport]:
        """Latest report per user matching the filters; an empty list when nothing matches."""
        params: Dict[str, Any] = {}
        if username:
            params["username"] = username
        if date:
            params["date"] = date
        if total_tests is not None:
            params["totalTests"] = total_tests
        if failed is not None:
            params["failed"] = failed
        if passed is not None:
            params["passed"] = passed

        response = await self._client.get("/filtered-test-results", params=params)
        if response.status_code == 404:
            return []
        response.raise_for_status()
        return [TestReport.from_payload(item) for item in response.json()]
