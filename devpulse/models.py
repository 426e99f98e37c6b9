import json
from typing import Any, Dict, Optional

from sqlalchemy import Column, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from .errors import DeserializationError

Base = declarative_base()

JsonDocument = Dict[str, Any]

# Attribute names of the structured columns on TestStatus, in wire order.
DOCUMENT_FIELDS = (
    "test_status",
    "project_info",
    "git_info",
    "test_runner_info",
    "environment",
    "execution",
)


class SerializedDocument(TypeDecorator):
    """Text column holding a JSON document.

    Documents are serialized on write. Reads return the stored text untouched;
    use ``decode_document`` at the query boundary so that a single bad row can
    be skipped instead of failing the whole result set.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        return value


def decode_document(column: str, raw: Optional[str]) -> Optional[JsonDocument]:
    """Decode a stored document, raising DeserializationError if it is not a JSON object."""
    if raw is None:
        return None
    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise DeserializationError(column, str(exc)) from exc
    if not isinstance(document, dict):
        raise DeserializationError(column, f"expected an object, got {type(document).__name__}")
    return document


class FileEvent(Base):
    __tablename__ = "file_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(1024), nullable=False)
    timestamp = Column(String(64), nullable=False)  # producer-supplied, not parsed


class TestStatus(Base):
    __tablename__ = "test_status"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user = Column(String(200), nullable=False)
    timestamp = Column(String(64), nullable=False)
    test_status = Column(SerializedDocument, nullable=True)
    project_info = Column(SerializedDocument, nullable=True)
    git_info = Column(SerializedDocument, nullable=True)
    test_runner_info = Column(SerializedDocument, nullable=True)
    environment = Column(SerializedDocument, nullable=True)
    execution = Column(SerializedDocument, nullable=True)

    __table_args__ = (
        Index("ix_test_status_user_ts", "user", "timestamp"),
        Index("ix_test_status_ts", "timestamp"),
    )


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class FileEventResponse(CamelModel):
    id: int
    file_name: str
    timestamp: str

    class Config:
        from_attributes = True


class TestStatusSubmission(CamelModel):
    """Inbound test-status report. Required-field rules are enforced by the ingestion service."""

    user: Optional[str] = None
    timestamp: Optional[str] = None
    test_status: Optional[JsonDocument] = None
    project_info: Optional[JsonDocument] = None
    git_info: Optional[JsonDocument] = None
    test_runner_info: Optional[JsonDocument] = None
    environment: Optional[JsonDocument] = None
    execution: Optional[JsonDocument] = None


class TestStatusResponse(CamelModel):
    id: int
    user: str
    timestamp: str
    test_status: Optional[JsonDocument] = None
    project_info: Optional[JsonDocument] = None
    git_info: Optional[JsonDocument] = None
    test_runner_info: Optional[JsonDocument] = None
    environment: Optional[JsonDocument] = None
    execution: Optional[JsonDocument] = None

    @classmethod
    def from_row(cls, row: TestStatus) -> "TestStatusResponse":
        """Build a response from a stored row, decoding every document column."""
        documents = {name: decode_document(name, getattr(row, name)) for name in DOCUMENT_FIELDS}
        return cls(id=row.id, user=row.user, timestamp=row.timestamp, **documents)


class SavedResponse(BaseModel):
    message: str
    id: int


class FilterParameters(CamelModel):
    username: Optional[str] = None
    date: Optional[str] = None
    total_tests: Optional[int] = None
    failed: Optional[int] = None
    passed: Optional[int] = None
