"""Row to document mapping.

Columns named ``_id``, ``_index``, ``_type``, ``_optype``, ``_routing`` and
``_parent`` control the bulk action instead of landing in the document body.
Dotted column names (``customer.address.city``) build nested objects.
"""

import base64
import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal, Mapping
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..errors import RowMappingError
from ..source.codec import TimestampCodec

OpType = Literal["index", "create", "delete"]
_OP_TYPES = ("index", "create", "delete")
_CONTROL_COLUMNS = {"_id", "_index", "_type", "_optype", "_routing", "_parent"}


class Document(BaseModel):
    model_config = ConfigDict(extra="forbid")

    index: str = Field(min_length=1)
    type: str | None = None
    id: str | None = None
    op_type: OpType = "index"
    routing: str | None = None
    parent: str | None = None
    source: dict[str, Any] = Field(default_factory=dict)

    def action(self) -> dict[str, dict[str, str]]:
        """Return the bulk action line for this document."""
        meta = {"_index": self.index}
        if self.type:
            meta["_type"] = self.type
        if self.id is not None:
            meta["_id"] = self.id
        if self.routing is not None:
            meta["routing"] = self.routing
        if self.parent is not None:
            meta["parent"] = self.parent
        return {self.op_type: meta}


class DocumentMapper:
    def __init__(self, index: str, type: str | None = None, codec: TimestampCodec | None = None):
        self.index = index
        self.type = type
        self.codec = codec

    def map_row(self, row: Mapping[str, Any], offset: int | None = None) -> Document:
        source: dict[str, Any] = {}
        for column, raw_value in row.items():
            if column in _CONTROL_COLUMNS:
                continue
            value = self._convert(column, raw_value, offset)
            _put_nested(source, column, value, offset)

        op_type = row.get("_optype") or "index"
        if not isinstance(op_type, str) or op_type.lower() not in _OP_TYPES:
            raise RowMappingError(f"Unsupported _optype {op_type!r}", offset)

        document_id = _optional_text(row.get("_id"))
        if op_type.lower() == "delete" and document_id is None:
            raise RowMappingError("A delete row needs an _id", offset)

        return Document(
            index=_optional_text(row.get("_index")) or self.index,
            type=_optional_text(row.get("_type")) or self.type,
            id=document_id,
            op_type=op_type.lower(),
            routing=_optional_text(row.get("_routing")),
            parent=_optional_text(row.get("_parent")),
            source=source,
        )

    def _convert(self, column: str, value: Any, offset: int | None) -> Any:
        if value is None or isinstance(value, (bool, int, str)):
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise RowMappingError(f"Column {column!r} holds non-finite float {value}", offset)
            return value
        if isinstance(value, Decimal):
            if not value.is_finite():
                raise RowMappingError(f"Column {column!r} holds non-finite decimal {value}", offset)
            return float(value)
        if isinstance(value, (datetime, date, time)):
            if self.codec is None:
                return value.isoformat()
            try:
                return self.codec.to_document_value(value)
            except ValueError as exc:
                raise RowMappingError(f"Column {column!r}: {exc}", offset) from exc
        if isinstance(value, (bytes, bytearray, memoryview)):
            return base64.b64encode(bytes(value)).decode("ascii")
        if isinstance(value, UUID):
            return str(value)
        raise RowMappingError(f"Column {column!r} has unsupported type {type(value).__name__}", offset)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _put_nested(target: dict[str, Any], column: str, value: Any, offset: int | None) -> None:
    *parents, leaf = column.split(".")
    node = target
    for part in parents:
        child = node.setdefault(part, {})
        if not isinstance(child, dict):
            raise RowMappingError(f"Column {column!r} conflicts with scalar column {part!r}", offset)
        node = child
    if isinstance(node.get(leaf), dict):
        raise RowMappingError(f"Column {column!r} conflicts with nested columns", offset)
    node[leaf] = value
