"""Relational endpoint with independently managed read and write connections."""

import re
from threading import Lock
from typing import Any, Callable, Iterator, Sequence

from sqlalchemy import DateTime, bindparam, create_engine, text
from sqlalchemy.engine import Connection, CursorResult, Engine, RowMapping
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from .._logging import get_logger
from ..errors import BindingError, SourceConnectionError
from .codec import TimestampCodec
from .config import SourceConfig
from .parameters import ParameterList

# quoted literals are matched first so a '?' inside them is left alone
_PLACEHOLDER = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?")


def _number_placeholders(statement: str) -> tuple[str, list[str]]:
    names: list[str] = []

    def replace(match: re.Match) -> str:
        token = match.group(0)
        if token != "?":
            return token
        name = f"p{len(names)}"
        names.append(name)
        return f":{name}"

    return _PLACEHOLDER.sub(replace, statement), names


def _is_disconnect(exc: SQLAlchemyError) -> bool:
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


class Source:
    def __init__(
        self,
        config: SourceConfig,
        *,
        engine_factory: Callable[..., Engine] = create_engine,
    ):
        self.config = config
        self.codec = TimestampCodec(config.timezone, config.locale)
        self.logger = get_logger("source")
        self._engine_factory = engine_factory
        self._engine: Engine | None = None
        self._read: Connection | None = None
        self._write: Connection | None = None
        self._lock = Lock()

    def __enter__(self) -> "Source":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def safe_url(self) -> str:
        return self.config.sqlalchemy_url().render_as_string(hide_password=True)

    def _get_engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._engine_factory(
                self.config.sqlalchemy_url(),
                pool_pre_ping=True,
                connect_args=dict(self.config.connect_args),
            )
            self.logger.info("Created engine for %s", self.safe_url)
        return self._engine

    def _connect(self, purpose: str) -> Connection:
        try:
            connection = self._get_engine().connect()
        except SQLAlchemyError as exc:
            self.logger.error("Connecting for %s to %s failed: %s", purpose, self.safe_url, exc)
            raise SourceConnectionError(f"Cannot connect for {purpose} to {self.safe_url}: {exc}") from exc
        self.logger.info("Opened %s connection to %s", purpose, self.safe_url)
        return connection

    def connect_for_reading(self) -> Connection:
        """Return the read connection, opening it on first use."""
        with self._lock:
            if self._read is None or self._read.closed:
                self._read = self._connect("reading")
            return self._read

    def connect_for_writing(self) -> Connection:
        """Return the write connection, opening it on first use."""
        with self._lock:
            if self._write is None or self._write.closed:
                self._write = self._connect("writing")
            return self._write

    def close_reading(self) -> None:
        with self._lock:
            connection, self._read = self._read, None
        if connection is not None and not connection.closed:
            connection.close()
            self.logger.info("Closed reading connection to %s", self.safe_url)

    def close_writing(self) -> None:
        with self._lock:
            connection, self._write = self._write, None
        if connection is not None and not connection.closed:
            connection.close()
            self.logger.info("Closed writing connection to %s", self.safe_url)

    def close(self) -> None:
        """Close reading before writing, then dispose the engine."""
        self.close_reading()
        self.close_writing()
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def bind(self, statement: str, parameters: ParameterList | Sequence[Any] = ()) -> TextClause:
        """Bind ``parameters`` to the ``?`` placeholders of ``statement`` in order."""
        if not isinstance(parameters, ParameterList):
            parameters = ParameterList.of(*parameters)

        sql, names = _number_placeholders(statement)
        if len(names) != len(parameters):
            raise BindingError(
                f"Statement has {len(names)} placeholders but {len(parameters)} parameters were given"
            )

        bound = []
        for position, (name, parameter) in enumerate(zip(names, parameters)):
            try:
                value, sql_type = parameter.native(self.codec)
            except BindingError as exc:
                raise BindingError(f"Parameter {position}: {exc}") from exc
            bound.append(bindparam(name, value, type_=sql_type))
        return text(sql).bindparams(*bound)

    def query(
        self,
        statement: str,
        parameters: ParameterList | Sequence[Any] = (),
        *,
        fetch_size: int | None = None,
        timestamp_columns: Sequence[str] = (),
    ) -> Iterator[RowMapping]:
        """Execute ``statement`` on the read connection and stream its rows.

        ``timestamp_columns`` are typed as ``DateTime`` so every driver returns
        them as naive wall clocks the codec can decode.
        """
        clause = self.bind(statement, parameters)
        if timestamp_columns:
            clause = clause.columns(**{name: DateTime() for name in timestamp_columns})
        connection = self.connect_for_reading()
        try:
            result = connection.execute(
                clause,
                execution_options={"yield_per": fetch_size or self.config.fetch_size},
            )
        except SQLAlchemyError as exc:
            self._release_read(connection)
            if _is_disconnect(exc):
                raise SourceConnectionError(f"Lost reading connection to {self.safe_url}: {exc}") from exc
            raise
        return self._stream(connection, result)

    def _stream(self, connection: Connection, result: CursorResult) -> Iterator[RowMapping]:
        try:
            for row in result.mappings():
                yield row
        except SQLAlchemyError as exc:
            if _is_disconnect(exc):
                raise SourceConnectionError(f"Lost reading connection to {self.safe_url}: {exc}") from exc
            raise
        finally:
            result.close()
            self._release_read(connection)

    def _release_read(self, connection: Connection) -> None:
        # ends the read transaction so writers are not blocked by its locks
        if not connection.closed and connection.in_transaction():
            connection.rollback()

    def update(self, statement: str, parameters: ParameterList | Sequence[Any] = ()) -> int:
        """Execute ``statement`` on the write connection, commit and return the row count."""
        clause = self.bind(statement, parameters)
        connection = self.connect_for_writing()
        try:
            result = connection.execute(clause)
            connection.commit()
        except SQLAlchemyError as exc:
            if not connection.closed:
                connection.rollback()
            if _is_disconnect(exc):
                raise SourceConnectionError(f"Lost writing connection to {self.safe_url}: {exc}") from exc
            raise
        return result.rowcount


def test_source_connection(config: SourceConfig | dict, raise_on_error: bool = False) -> bool:
    logger = get_logger("source")
    try:
        source_config = config if isinstance(config, SourceConfig) else SourceConfig.model_validate(config)
        with Source(source_config) as source:
            source.connect_for_reading().execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Source connection test failed")
        if raise_on_error:
            raise
        return False
