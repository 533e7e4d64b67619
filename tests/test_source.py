import math
import unittest
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy import DateTime, text
from sqlalchemy.exc import OperationalError

from sqlfeeder.errors import BindingError, SourceConnectionError
from sqlfeeder.source import ParameterList, Source, SourceConfig
from sqlfeeder.source import test_source_connection as source_connection_healthcheck
from sqlfeeder.source.parameters import ParameterKind


def test_read_and_write_connections_are_lazy_idempotent_and_distinct(make_source):
    source = make_source()

    reading = source.connect_for_reading()
    writing = source.connect_for_writing()

    assert source.connect_for_reading() is reading
    assert source.connect_for_writing() is writing
    assert reading is not writing


@pytest.mark.parametrize("order", [("close_reading", "close_writing"), ("close_writing", "close_reading")])
def test_closing_without_open_connections_is_a_noop(make_source, order):
    source = make_source()

    for method in order:
        getattr(source, method)()
    for method in order:
        getattr(source, method)()


def test_closing_one_side_leaves_the_other_open(make_source):
    source = make_source()
    reading = source.connect_for_reading()
    writing = source.connect_for_writing()

    source.close_reading()
    assert reading.closed
    assert not writing.closed

    reopened = source.connect_for_reading()
    source.close_writing()
    assert writing.closed
    assert not reopened.closed
    assert reopened is not reading


def test_unreachable_endpoint_raises_connection_error(tmp_path):
    config = SourceConfig(
        url=f"sqlite+pysqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}",
        locale="en_US",
        timezone="UTC",
    )
    with Source(config) as source:
        with pytest.raises(SourceConnectionError):
            source.connect_for_reading()
        with pytest.raises(SourceConnectionError):
            source.connect_for_writing()


def test_rejected_credentials_raise_connection_error():
    engine = MagicMock()
    engine.connect.side_effect = OperationalError("connect", {}, Exception("password authentication failed"))
    config = SourceConfig(
        url="postgresql+psycopg://db.local/shop",
        user="feeder",
        password="s3cret",
        locale="en_US",
        timezone="UTC",
    )
    source = Source(config, engine_factory=lambda *_args, **_kwargs: engine)

    with pytest.raises(SourceConnectionError) as excinfo:
        source.connect_for_writing()

    assert "s3cret" not in str(excinfo.value)
    assert "feeder" in str(excinfo.value)


def test_engine_factory_receives_credentials_and_connect_args():
    factory = MagicMock()
    config = SourceConfig(
        url="postgresql+psycopg://db.local:5433/shop",
        user="feeder",
        password="p@ss",
        locale="en_US",
        timezone="UTC",
        connect_args={"connect_timeout": 5},
    )
    source = Source(config, engine_factory=factory)

    source.connect_for_reading()

    args, kwargs = factory.call_args
    assert args[0].username == "feeder"
    assert args[0].password == "p@ss"
    assert args[0].port == 5433
    assert kwargs["connect_args"] == {"connect_timeout": 5}
    assert kwargs["pool_pre_ping"] is True


def test_query_streams_rows_and_releases_read_transaction(make_source, products):
    products(5)
    source = make_source()

    rows = list(source.query("SELECT id, name FROM products WHERE amount >= ? ORDER BY id", [20], fetch_size=2))

    assert [row["id"] for row in rows] == [3, 4, 5]
    assert not source.connect_for_reading().in_transaction()


def test_update_commits_on_write_connection(make_source, products):
    products(3)
    source = make_source()

    changed = source.update("UPDATE products SET exported = ? WHERE id <= ?", ParameterList().add_integer(1).add_integer(2))

    assert changed == 2
    source.close_writing()
    reader = make_source()
    exported = [row["exported"] for row in reader.query("SELECT exported FROM products ORDER BY id")]
    assert exported == [1, 1, 0]


def test_timestamp_written_under_zone_reads_back_as_same_instant(make_source):
    writer = make_source(timezone="America/New_York", locale="en_US")
    writer.update("CREATE TABLE logs (modified TIMESTAMP, message TEXT)")
    instant = datetime(2024, 7, 4, 16, 0, 0, 123456, tzinfo=UTC)
    writer.update("INSERT INTO logs (modified, message) VALUES (?, ?)", ParameterList().add_timestamp(instant).add_string("Hello world"))
    writer.close()

    reader = make_source(timezone="America/New_York", locale="en_US")
    statement = text("SELECT modified FROM logs").columns(modified=DateTime())
    stored = reader.connect_for_reading().execute(statement).scalar_one()

    assert stored == datetime(2024, 7, 4, 12, 0, 0, 123456)
    assert reader.codec.decode(stored).astimezone(UTC) == instant


class BindTests(unittest.TestCase):
    def setUp(self):
        self.source = Source(SourceConfig(url="sqlite+pysqlite:///:memory:", locale="de_DE", timezone="Europe/Berlin"))

    def test_binds_values_in_order(self):
        parameters = ParameterList().add_string("widget").add_integer(42).add_float(9.5)

        clause = self.source.bind("INSERT INTO products (name, amount, price) VALUES (?, ?, ?)", parameters)

        compiled = clause.compile()
        self.assertEqual(compiled.params, {"p0": "widget", "p1": 42, "p2": 9.5})

    def test_question_marks_inside_literals_are_not_placeholders(self):
        clause = self.source.bind("SELECT * FROM faq WHERE question = 'why?' AND id = ?", [7])

        self.assertIn("'why?'", str(clause))
        self.assertEqual(clause.compile().params, {"p0": 7})

    def test_timestamp_is_rendered_in_source_zone(self):
        instant = datetime(2024, 7, 1, 12, 0, tzinfo=UTC)

        clause = self.source.bind("SELECT ?", ParameterList().add_timestamp(instant))

        self.assertEqual(clause.compile().params["p0"], datetime(2024, 7, 1, 14, 0))

    def test_placeholder_count_mismatch(self):
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ? + ?", [1])

    def test_type_mismatch(self):
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", ParameterList().add_integer("12"))
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", ParameterList().add_integer(True))
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", ParameterList().add_timestamp("2024-01-01"))
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", ParameterList().add_string(3))

    def test_out_of_range_values(self):
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", [2**63])
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", [math.nan])
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", ParameterList().add_float(math.inf))

    def test_naive_timestamp_is_rejected(self):
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", [datetime(2024, 1, 1)])

    def test_unsupported_python_type(self):
        with self.assertRaises(BindingError):
            self.source.bind("SELECT ?", [Decimal("1.5")])

    def test_nulls_bind_for_any_kind(self):
        clause = self.source.bind("SELECT ?, ?, ?", ParameterList().add_null().add_integer(None).add_timestamp(None))

        self.assertEqual(clause.compile().params, {"p0": None, "p1": None, "p2": None})


class ParameterListTests(unittest.TestCase):
    def test_of_infers_kinds(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        parameters = ParameterList.of("a", 1, 1.5, True, None, now)

        self.assertEqual(
            [parameter.kind for parameter in parameters],
            [
                ParameterKind.STRING,
                ParameterKind.INTEGER,
                ParameterKind.FLOAT,
                ParameterKind.BOOLEAN,
                ParameterKind.NULL,
                ParameterKind.TIMESTAMP,
            ],
        )

    def test_from_settings_resolves_placeholders(self):
        now = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

        parameters = ParameterList.from_settings(
            ["$now", "$counter", {"timestamp": "2024-01-01T00:00:00+02:00"}, "plain"],
            counter=7,
            now=now,
        )

        self.assertEqual(parameters[0], (ParameterKind.TIMESTAMP, now))
        self.assertEqual(parameters[1], (ParameterKind.INTEGER, 7))
        self.assertEqual(parameters[2].value.utcoffset().total_seconds(), 7200)
        self.assertEqual(parameters[3], (ParameterKind.STRING, "plain"))

    def test_from_settings_rejects_bad_timestamp_objects(self):
        with self.assertRaises(BindingError):
            ParameterList.from_settings([{"timestamp": "2024-01-01T00:00:00"}])
        with self.assertRaises(BindingError):
            ParameterList.from_settings([{"date": "2024-01-01"}])


class SourceConfigTests(unittest.TestCase):
    def test_locale_and_timezone_are_required(self):
        with self.assertRaises(ValidationError):
            SourceConfig(url="sqlite+pysqlite:///:memory:", timezone="UTC")
        with self.assertRaises(ValidationError):
            SourceConfig(url="sqlite+pysqlite:///:memory:", locale="en_US")

    def test_config_is_immutable(self):
        config = SourceConfig(url="sqlite+pysqlite:///:memory:", locale="en-us", timezone="UTC")

        self.assertEqual(config.locale, "en_US")
        with self.assertRaises(ValidationError):
            config.url = "sqlite+pysqlite:///other.db"

    def test_invalid_values_are_rejected(self):
        with self.assertRaises(ValidationError):
            SourceConfig(url="not a url", locale="en_US", timezone="UTC")
        with self.assertRaises(ValidationError):
            SourceConfig(url="sqlite+pysqlite:///:memory:", locale="en_US", timezone="Nowhere/City")


class SourceHealthTests(unittest.TestCase):
    def test_source_connection_check(self):
        self.assertTrue(
            source_connection_healthcheck({"url": "sqlite+pysqlite:///:memory:", "locale": "en_US", "timezone": "UTC"})
        )
        self.assertFalse(source_connection_healthcheck({"url": "sqlite+pysqlite:///:memory:"}))
        with self.assertRaises(ValidationError):
            source_connection_healthcheck({"url": "sqlite+pysqlite:///:memory:"}, raise_on_error=True)
