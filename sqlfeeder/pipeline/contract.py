from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class State(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (State.IDLE, State.ABORTED)


class RunStatistics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    counter: int = Field(ge=0)
    state: State = State.IDLE
    rows_read: int = Field(default=0, ge=0)
    submitted: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    flushes: int = Field(default=0, ge=0)
    rows_written: int = Field(default=0, ge=0)
    last_row_offset: int = Field(default=-1, ge=-1)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None

    @computed_field
    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
