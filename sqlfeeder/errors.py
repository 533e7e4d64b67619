"""Error taxonomy shared by the source, ingest and pipeline layers."""


class FeederError(Exception):
    """Base class for every error raised by sqlfeeder."""

    counter: int | None = None
    last_row_offset: int | None = None

    def with_run_context(self, counter: int, last_row_offset: int) -> "FeederError":
        self.counter = counter
        self.last_row_offset = last_row_offset
        return self


class SettingsError(FeederError):
    """The settings payload is missing keys or holds invalid values."""


class SourceConnectionError(FeederError):
    """The relational endpoint is unreachable or rejected the credentials."""


class BindingError(FeederError):
    """A statement parameter has the wrong type or is out of range."""


class RowMappingError(FeederError):
    """A single row could not be converted to a document."""

    def __init__(self, message: str, offset: int | None = None):
        super().__init__(message)
        self.offset = offset


class IngestError(FeederError):
    """A bulk request failed.

    ``item_indexes`` lists the positions of the rejected documents when the
    backend answered per item; ``None`` means the whole request failed.
    """

    def __init__(self, message: str, item_indexes: list[int] | None = None):
        super().__init__(message)
        self.item_indexes = item_indexes


class IngestTransientError(IngestError):
    """The search backend is busy or unavailable; the request may be retried."""


class IngestFatalError(IngestError):
    """The search backend rejected a batch irrecoverably."""


class AlreadyRunningError(FeederError):
    """execute() was called on a context that is not IDLE."""


class TimestampCodecError(FeederError, ValueError):
    """A wall-clock value has no instant in the codec's time zone."""
