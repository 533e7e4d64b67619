"""Run audit records written through a Source's write connection."""

from sqlalchemy import DateTime, bindparam, text

from .._logging import get_logger
from ..source.source import Source
from .contract import RunStatistics

logger = get_logger("pipeline.audit")


def _quote_identifier(value: str) -> str:
    escaped = value.replace('"', '""')
    return f'"{escaped}"'


def ensure_audit_table(source: Source, table_name: str) -> None:
    """Create the audit table on the source when it does not exist yet."""
    is_sqlite = source.config.sqlalchemy_url().get_backend_name() == "sqlite"
    id_type = "INTEGER PRIMARY KEY AUTOINCREMENT" if is_sqlite else "BIGSERIAL PRIMARY KEY"
    ts_type = "TIMESTAMP" if is_sqlite else "TIMESTAMP WITH TIME ZONE"

    ddl = f"""
    CREATE TABLE IF NOT EXISTS {_quote_identifier(table_name)} (
        id              {id_type},
        counter         BIGINT NOT NULL,
        state           TEXT NOT NULL,   -- 'idle' | 'aborted'
        rows_read       BIGINT,
        submitted       BIGINT,
        failed          BIGINT,
        skipped         BIGINT,
        last_row_offset BIGINT,
        error_message   TEXT,
        started_at      {ts_type} NOT NULL,
        finished_at     {ts_type}
    )
    """
    connection = source.connect_for_writing()
    logger.info("Ensuring audit table exists", extra={"table": table_name})
    connection.execute(text(ddl))
    connection.commit()


def write_audit_record(source: Source, table_name: str, statistics: RunStatistics) -> None:
    """Insert one audit row for a finished run."""
    sql = f"""
    INSERT INTO {_quote_identifier(table_name)} (
        counter, state, rows_read, submitted, failed, skipped,
        last_row_offset, error_message, started_at, finished_at
    ) VALUES (
        :counter, :state, :rows_read, :submitted, :failed, :skipped,
        :last_row_offset, :error_message, :started_at, :finished_at
    )
    """
    params = {
        "counter": statistics.counter,
        "state": statistics.state.value,
        "rows_read": statistics.rows_read,
        "submitted": statistics.submitted,
        "failed": statistics.failed,
        "skipped": statistics.skipped,
        "last_row_offset": statistics.last_row_offset,
        "error_message": statistics.error_message,
        "started_at": statistics.started_at,
        "finished_at": statistics.finished_at,
    }

    connection = source.connect_for_writing()
    logger.info("Writing audit record", extra={"counter": statistics.counter, "state": statistics.state.value})
    statement = text(sql).bindparams(
        bindparam("started_at", type_=DateTime(timezone=True)),
        bindparam("finished_at", type_=DateTime(timezone=True)),
    )
    connection.execute(statement, params)
    connection.commit()
