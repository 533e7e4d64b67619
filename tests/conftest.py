import threading

import pytest

from sqlfeeder.ingest.sink import BulkIngestSink
from sqlfeeder.source import Source, SourceConfig


class FakeBulkClient:
    """Stands in for SearchClient; raises queued errors before succeeding."""

    def __init__(self, errors=(), always=None):
        self.errors = list(errors)
        self.always = always
        self.calls = 0
        self.batches = []
        self.closed = 0

    def bulk(self, documents):
        self.calls += 1
        if self.always is not None:
            raise self.always
        if self.errors:
            raise self.errors.pop(0)
        self.batches.append(list(documents))
        return len(documents)

    def close(self):
        self.closed += 1


class BlockingBulkClient(FakeBulkClient):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def bulk(self, documents):
        self.entered.set()
        self.release.wait(timeout=10)
        return super().bulk(documents)


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite+pysqlite:///{tmp_path / 'source.db'}"


@pytest.fixture
def make_source(sqlite_url):
    sources = []

    def factory(**overrides):
        values = {"url": sqlite_url, "locale": "en_US", "timezone": "UTC"}
        values.update(overrides)
        source = Source(SourceConfig(**values))
        sources.append(source)
        return source

    yield factory

    for source in sources:
        source.close()


@pytest.fixture
def products(make_source):
    """Create a products table and return a function inserting ``n`` rows."""
    fixture_source = make_source()
    fixture_source.update(
        "CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, amount INTEGER, price REAL, "
        "_optype TEXT, exported INTEGER DEFAULT 0)"
    )

    def insert(count, malformed=()):
        for i in range(count):
            optype = "bogus" if i in malformed else None
            fixture_source.update(
                "INSERT INTO products (id, name, amount, price, _optype) VALUES (?, ?, ?, ?, ?)",
                [i + 1, f"product-{i + 1}", i * 10, i * 1.5, optype],
            )
        fixture_source.close()

    return insert


@pytest.fixture
def sink_factory():
    """Return (factory, created) where factory builds BulkIngestSinks around one client."""

    def build(client, **kwargs):
        created = []
        kwargs.setdefault("sleep", lambda _seconds: None)

        def factory():
            sink = BulkIngestSink(client, **kwargs)
            created.append(sink)
            return sink

        return factory, created

    return build
