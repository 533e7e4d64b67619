"""Feed rows from relational sources into an Elasticsearch/OpenSearch index."""

from .config import load_settings
from .errors import (
    AlreadyRunningError,
    BindingError,
    FeederError,
    IngestError,
    IngestFatalError,
    IngestTransientError,
    RowMappingError,
    SettingsError,
    SourceConnectionError,
    TimestampCodecError,
)
from .ingest import BulkIngestSink, Document, DocumentMapper, IngestSink, SearchClient, bulk_ingest_factory
from .pipeline import RunContext, RunStatistics, State, wait_for
from .settings import IngestSettings, RunSettings, StatementSettings
from .source import ParameterList, Source, SourceConfig, TimestampCodec

__version__ = "0.1.0"

__all__ = [
    "load_settings",
    "AlreadyRunningError",
    "BindingError",
    "FeederError",
    "IngestError",
    "IngestFatalError",
    "IngestTransientError",
    "RowMappingError",
    "SettingsError",
    "SourceConnectionError",
    "TimestampCodecError",
    "BulkIngestSink",
    "Document",
    "DocumentMapper",
    "IngestSink",
    "SearchClient",
    "bulk_ingest_factory",
    "RunContext",
    "RunStatistics",
    "State",
    "wait_for",
    "IngestSettings",
    "RunSettings",
    "StatementSettings",
    "ParameterList",
    "Source",
    "SourceConfig",
    "TimestampCodec",
]
