from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SessionStatus(StrEnum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionStatus.RUNNING


class SessionRecord(BaseModel):
    """One run attempt. Serialized with camelCase keys in sessions.json and the API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    goal: str
    max_iterations: int = Field(default=0, ge=0)
    workdir: Path
    state_dir: Path
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None
    status: SessionStatus = SessionStatus.RUNNING
    thread_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def finish(self, status: SessionStatus) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Session {self.id} already finished as {self.status}")
        if not status.is_terminal:
            raise ValueError(f"{status} is not a terminal status")
        self.status = status
        self.ended_at = datetime.now(UTC)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
