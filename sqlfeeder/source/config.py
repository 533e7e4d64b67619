from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from .codec import normalize_locale, resolve_zone


class SourceConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    url: str = Field(min_length=1)
    user: str | None = None
    password: str | None = None
    locale: str = Field(min_length=1)
    timezone: str = Field(min_length=1)
    fetch_size: int = Field(default=100, ge=1)
    connect_args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        try:
            make_url(value)
        except ArgumentError as exc:
            raise ValueError(f"Invalid database URL: {exc}") from exc
        return value

    @field_validator("locale")
    @classmethod
    def _check_locale(cls, value: str) -> str:
        return normalize_locale(value)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        return resolve_zone(value).key

    def sqlalchemy_url(self) -> URL:
        """Return the URL with ``user``/``password`` applied when they are set."""
        url = make_url(self.url)
        if self.user is not None:
            url = url.set(username=self.user)
        if self.password is not None:
            url = url.set(password=self.password)
        return url
