"""Run lifecycle: one synchronization pass from SQL rows to indexed documents.

State machine::

    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE
    STARTING | RUNNING | STOPPING -> ABORTED (terminal)

Only the context changes its state. Other threads read it through
``get_state()`` or block on ``wait_for_state()`` / ``wait_for()``.
"""

from contextlib import closing
from datetime import UTC, datetime
from threading import Condition
from typing import Any, Callable, Mapping

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .._logging import get_logger
from ..errors import AlreadyRunningError, FeederError, RowMappingError, SettingsError
from ..ingest.documents import DocumentMapper
from ..ingest.sink import IngestFactory, IngestSink
from ..settings import RunSettings, StatementSettings
from ..source.parameters import ParameterList
from ..source.source import Source
from .audit import ensure_audit_table, write_audit_record
from .contract import RunStatistics, State


class RunContext:
    def __init__(
        self,
        source: Source,
        settings: RunSettings | Mapping[str, Any],
        ingest_factory: IngestFactory,
        counter: int = 0,
        mapper: DocumentMapper | None = None,
        on_state_change: Callable[[State], None] | None = None,
    ):
        if counter < 0:
            raise ValueError("counter must not be negative")
        if not isinstance(settings, RunSettings):
            try:
                settings = RunSettings.model_validate(settings)
            except ValidationError as exc:
                raise SettingsError(f"Invalid run settings: {exc}") from exc

        self.source = source
        self.settings = settings
        self.ingest_factory = ingest_factory
        self.mapper = mapper or DocumentMapper(settings.ingest.index, settings.ingest.type, codec=source.codec)
        self.statistics: RunStatistics | None = None
        self.on_state_change = on_state_change
        self.logger = get_logger("pipeline.context")
        self._counter = counter
        self._state = State.IDLE
        self._condition = Condition()

    @property
    def counter(self) -> int:
        with self._condition:
            return self._counter

    def get_state(self) -> State:
        with self._condition:
            return self._state

    @property
    def state(self) -> State:
        return self.get_state()

    def wait_for_state(self, state: State, timeout: float) -> bool:
        """Block until ``state`` is reached or ``timeout`` seconds pass; never raises on timeout."""
        with self._condition:
            return self._condition.wait_for(lambda: self._state is state, timeout=max(timeout, 0))

    def _transition(self, state: State) -> None:
        with self._condition:
            self.logger.info("Run %s state %s -> %s", self._counter, self._state.value, state.value)
            self._state = state
            self._condition.notify_all()
        if self.on_state_change is not None:
            self.on_state_change(state)

    def execute(self) -> RunStatistics:
        """Run one synchronization pass and return its statistics.

        Blocks until the run is IDLE again or ABORTED. Only a call on a
        context that is not IDLE raises (``AlreadyRunningError``).
        """
        with self._condition:
            if self._state is State.ABORTED:
                raise AlreadyRunningError("Context was aborted; create a new one for the next run")
            if self._state is not State.IDLE:
                raise AlreadyRunningError(f"Run {self._counter} is still {self._state.value}")
            self._state = State.STARTING
            self._condition.notify_all()
            counter = self._counter
        if self.on_state_change is not None:
            self.on_state_change(State.STARTING)

        statistics = RunStatistics(counter=counter, state=State.STARTING, started_at=datetime.now(UTC))
        self.statistics = statistics
        self.logger.info("Run %s starting", counter, extra={"statements": len(self.settings.sql)})

        sink: IngestSink | None = None
        try:
            sink = self.ingest_factory()
            with sink:
                for statement in self.settings.sql:
                    self._run_statement(statement, sink, statistics)
                if self.get_state() is State.STARTING:
                    self._transition(State.RUNNING)
                self._transition(State.STOPPING)
                sink.flush()
        except Exception as exc:
            self._abort(statistics, sink, exc)
        else:
            self._finish(statistics, sink)
        return statistics

    def _run_statement(self, statement: StatementSettings, sink: IngestSink, statistics: RunStatistics) -> None:
        parameters = ParameterList.from_settings(statement.parameters, counter=statistics.counter)

        if statement.write:
            written = self.source.update(statement.statement, parameters)
            statistics.rows_written += max(written, 0)
            self.logger.info("Run %s write statement affected %s rows", statistics.counter, written)
            return

        rows = self.source.query(
            statement.statement,
            parameters,
            fetch_size=statement.fetch_size,
            timestamp_columns=statement.timestamp_columns,
        )
        if self.get_state() is State.STARTING:
            self._transition(State.RUNNING)

        with closing(rows):
            for row in rows:
                offset = statistics.rows_read
                statistics.rows_read += 1
                try:
                    document = self.mapper.map_row(row, offset)
                except RowMappingError as exc:
                    statistics.skipped += 1
                    self.logger.warning("Run %s skipping row %s: %s", statistics.counter, offset, exc)
                    continue
                sink.submit(document)
                statistics.last_row_offset = offset

    def _collect(self, statistics: RunStatistics, sink: IngestSink | None) -> None:
        if sink is None:
            return
        statistics.submitted = sink.submitted
        statistics.failed = sink.failed
        statistics.flushes = sink.flushes

    def _finish(self, statistics: RunStatistics, sink: IngestSink | None) -> None:
        self._collect(statistics, sink)
        statistics.state = State.IDLE
        statistics.finished_at = datetime.now(UTC)
        try:
            self._audit(statistics)
            self._release_source()
        finally:
            with self._condition:
                self._counter += 1
            self.logger.info(
                "Run %s finished: %s rows read, %s submitted, %s skipped",
                statistics.counter,
                statistics.rows_read,
                statistics.submitted,
                statistics.skipped,
            )
            self._transition(State.IDLE)

    def _abort(self, statistics: RunStatistics, sink: IngestSink | None, exc: Exception) -> None:
        if isinstance(exc, FeederError):
            exc.with_run_context(statistics.counter, statistics.last_row_offset)
        self._collect(statistics, sink)
        statistics.state = State.ABORTED
        statistics.finished_at = datetime.now(UTC)
        statistics.error_message = f"{type(exc).__name__}: {exc}"
        self.logger.error(
            "Run %s aborted after row offset %s: %s",
            statistics.counter,
            statistics.last_row_offset,
            statistics.error_message,
            exc_info=exc,
        )
        try:
            self._audit(statistics)
            self._release_source()
        finally:
            self._transition(State.ABORTED)

    def _audit(self, statistics: RunStatistics) -> None:
        table_name = self.settings.audit_table
        if not table_name:
            return
        try:
            # the read side is closed first so the write side never waits on an open cursor
            self.source.close_reading()
            ensure_audit_table(self.source, table_name)
            write_audit_record(self.source, table_name, statistics)
        except (SQLAlchemyError, FeederError):
            self.logger.exception("Run %s audit record could not be written", statistics.counter)

    def _release_source(self) -> None:
        for release in (self.source.close_reading, self.source.close_writing):
            try:
                release()
            except SQLAlchemyError:
                self.logger.exception("Run %s could not close a source connection", self._counter)


def wait_for(context: RunContext, state: State, max_millis: float) -> bool:
    """Return True iff ``context`` reaches ``state`` within ``max_millis`` milliseconds."""
    return context.wait_for_state(state, max_millis / 1000.0)
