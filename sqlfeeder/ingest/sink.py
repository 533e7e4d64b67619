"""Batching sinks that push documents to the search backend."""

import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Callable, Protocol, Sequence

import requests
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .._logging import get_logger
from ..errors import IngestFatalError, IngestTransientError
from ..settings import IngestSettings
from .client import SearchClient
from .documents import Document


class BulkClient(Protocol):
    def bulk(self, documents: Sequence[Document]) -> int: ...

    def close(self) -> None: ...


class IngestSink(ABC):
    """A sink owned by one run. Leaving its ``with`` block closes it exactly once."""

    submitted: int = 0
    failed: int = 0
    flushes: int = 0

    @abstractmethod
    def submit(self, document: Document) -> None:
        """Buffer ``document``, flushing when the batch is full."""
        pass

    @abstractmethod
    def flush(self) -> int:
        """Send buffered documents and return how many were sent."""
        pass

    @abstractmethod
    def close(self, discard_pending: bool = False) -> None:
        """Flush what is left (unless discarding) and release the backend client."""
        pass

    def __enter__(self) -> "IngestSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(discard_pending=exc_type is not None)


IngestFactory = Callable[[], IngestSink]


class BulkIngestSink(IngestSink):
    def __init__(
        self,
        client: BulkClient,
        *,
        batch_size: int = 100,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        max_backoff_seconds: float = 30,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be greater than zero")
        if max_attempts < 1:
            raise ValueError("max_attempts must be greater than zero")

        self.client = client
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.submitted = 0
        self.failed = 0
        self.flushes = 0
        self.attempts = 0
        self.logger = get_logger("ingest.sink")
        self._sleep = sleep
        self._buffer: list[Document] = []
        self._flush_lock = Lock()
        self._fatal: IngestFatalError | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def _check_usable(self) -> None:
        if self._closed:
            raise IngestFatalError("Ingest sink is closed")
        if self._fatal is not None:
            raise IngestFatalError(f"Ingest sink failed earlier: {self._fatal}")

    def submit(self, document: Document) -> None:
        self._check_usable()
        self._buffer.append(document)
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> int:
        with self._flush_lock:
            self._check_usable()
            if not self._buffer:
                return 0

            batch = list(self._buffer)
            # shrinks to the rejected documents after every partial answer
            remaining = list(batch)
            retrying = Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff_seconds, max=self.max_backoff_seconds),
                retry=retry_if_exception_type(IngestTransientError),
                before_sleep=self._log_retry,
                sleep=self._sleep,
                reraise=True,
            )
            try:
                retrying(self._send, remaining)
            except IngestTransientError as exc:
                fatal = IngestFatalError(
                    f"Flush of {len(remaining)} of {len(batch)} documents failed "
                    f"after {self.max_attempts} attempts: {exc}"
                )
                self._fail(remaining, fatal)
                raise fatal from exc
            except IngestFatalError as exc:
                if exc.item_indexes is not None:
                    self._keep_rejected(remaining, exc.item_indexes)
                self._fail(remaining, exc)
                raise

            del self._buffer[: len(batch)]
            self.submitted += len(remaining)
            self.flushes += 1
            self.logger.info(
                "Flushed batch",
                extra={"documents": len(batch), "submitted": self.submitted, "flushes": self.flushes},
            )
            return len(batch)

    def _send(self, remaining: list[Document]) -> int:
        self.attempts += 1
        try:
            return self.client.bulk(remaining)
        except IngestTransientError as exc:
            if exc.item_indexes is not None:
                self._keep_rejected(remaining, exc.item_indexes)
            raise

    def _keep_rejected(self, remaining: list[Document], indexes: list[int]) -> None:
        """Count accepted documents as submitted and keep only the rejected ones in ``remaining``."""
        rejected = [remaining[index] for index in indexes]
        self.submitted += len(remaining) - len(rejected)
        remaining[:] = rejected

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self.logger.warning(
            "Bulk flush attempt %s/%s failed (%s). Retrying in %.1fs",
            retry_state.attempt_number,
            self.max_attempts,
            retry_state.outcome.exception() if retry_state.outcome else None,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    def _fail(self, batch: list[Document], error: IngestFatalError) -> None:
        self.failed += len(batch)
        self._buffer.clear()
        self._fatal = error
        self.logger.error("Bulk flush failed: %s", error)

    def close(self, discard_pending: bool = False) -> None:
        if self._closed:
            return
        try:
            if self._buffer and not discard_pending and self._fatal is None:
                self.flush()
            elif self._buffer:
                self.logger.warning("Discarding %s pending documents", len(self._buffer))
                self.failed += len(self._buffer)
                self._buffer.clear()
        finally:
            self._closed = True
            self.client.close()


def bulk_ingest_factory(
    settings: IngestSettings,
    *,
    session_factory: Callable[[], requests.Session] = requests.Session,
    sleep: Callable[[float], None] = time.sleep,
) -> IngestFactory:
    """Return a factory building a fresh client and sink for every run."""

    def factory() -> IngestSink:
        client = SearchClient(settings, session=session_factory())
        return BulkIngestSink(
            client,
            batch_size=settings.batch_size,
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.backoff_seconds,
            max_backoff_seconds=settings.max_backoff_seconds,
            sleep=sleep,
        )

    return factory
