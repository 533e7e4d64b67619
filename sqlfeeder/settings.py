"""Typed view of the resolved settings payload a run consumes."""

from typing import Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator, model_validator

from .source.config import SourceConfig


class StatementSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    statement: str = Field(min_length=1)
    parameters: list[Any] = Field(default_factory=list)
    write: bool = False
    fetch_size: int | None = Field(default=None, ge=1)
    # columns the driver should hand back as datetimes (SQLite returns TIMESTAMP as text)
    timestamp_columns: list[str] = Field(default_factory=list)


class IngestSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: AnyHttpUrl
    index: str = Field(min_length=1)
    type: str | None = None
    username: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    timeout_seconds: float = Field(default=30, gt=0)
    verify_ssl: bool = True
    batch_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=0.5, ge=0)
    max_backoff_seconds: float = Field(default=30, ge=0)
    refresh: bool = False


class RunSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: SourceConfig | None = None
    sql: list[StatementSettings] = Field(min_length=1)
    ingest: IngestSettings
    audit_table: str | None = Field(default=None, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")

    @field_validator("sql", mode="before")
    @classmethod
    def _single_statement(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [{"statement": value}]
        if isinstance(value, dict):
            return [value]
        return value

    @model_validator(mode="after")
    def _needs_a_read(self) -> "RunSettings":
        if all(statement.write for statement in self.sql):
            raise ValueError("At least one sql statement must read rows (write: false)")
        return self
