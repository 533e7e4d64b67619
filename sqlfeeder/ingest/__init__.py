from .client import SearchClient, build_bulk_body, test_search_connection
from .documents import Document, DocumentMapper
from .sink import BulkIngestSink, IngestFactory, IngestSink, bulk_ingest_factory

__all__ = [
    "SearchClient",
    "build_bulk_body",
    "test_search_connection",
    "Document",
    "DocumentMapper",
    "BulkIngestSink",
    "IngestFactory",
    "IngestSink",
    "bulk_ingest_factory",
]
